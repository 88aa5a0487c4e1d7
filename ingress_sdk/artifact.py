"""
Persisted artifacts.

Signed envelopes are written to JSON files (or streams) and read back later,
possibly by another process on another machine.
"""
import json
import logging
import sys
from pathlib import Path
from typing import List, Sequence, Union

from pydantic import TypeAdapter, ValidationError

from .exceptions import InvalidArtifact
from .models import Envelope, SignedCallBundle

logger = logging.getLogger(__name__)

ArtifactItem = Union[Envelope, SignedCallBundle]

# Tried in this order; the first shape that validates wins
_SHAPES = (
    ("envelope", TypeAdapter(Envelope)),
    ("envelope list", TypeAdapter(List[Envelope])),
    ("bundle list", TypeAdapter(List[SignedCallBundle])),
    ("bundle", TypeAdapter(SignedCallBundle)),
)


def load_artifact(text: Union[str, bytes]) -> List[ArtifactItem]:
    """
    Parse a persisted artifact.

    Accepts a single envelope, a list of envelopes, a list of bundles or a
    single bundle.

    Args:
        text: JSON document

    Returns:
        The artifact's items, in file order

    Raises:
        InvalidArtifact: If the document matches none of the known shapes
    """
    try:
        document = json.loads(text)
    except ValueError as e:
        raise InvalidArtifact(f"Invalid JSON content: {e}") from e

    errors = []
    for name, adapter in _SHAPES:
        try:
            parsed = adapter.validate_python(document)
        except ValidationError as e:
            errors.append(f"{name}: {e.error_count()} validation error(s)")
            continue
        logger.debug("Loaded artifact as %s", name)
        return list(parsed) if isinstance(parsed, list) else [parsed]

    raise InvalidArtifact("Invalid JSON content; tried " + ", ".join(errors))


def dump_artifact(items: Union[ArtifactItem, Sequence[ArtifactItem]]) -> str:
    """
    Serialize one item or a list of items to JSON.

    Raises:
        InvalidArtifact: If a list mixes envelopes and bundles, which could
            not be read back
    """
    if isinstance(items, (Envelope, SignedCallBundle)):
        return items.model_dump_json()
    kinds = {type(item) for item in items}
    if len(kinds) > 1:
        raise InvalidArtifact("An artifact list holds either envelopes or bundles, not both")
    payload = [item.model_dump(mode="json") for item in items]
    return json.dumps(payload, separators=(",", ":"))


def read_artifact(path: Union[str, Path]) -> List[ArtifactItem]:
    """
    Read an artifact from a file, or from standard input when ``path`` is ``-``.

    Raises:
        InvalidArtifact: If the file cannot be read or parsed
    """
    if str(path) == "-":
        return load_artifact(sys.stdin.read())
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidArtifact(f"Cannot read artifact file {path}: {e}") from e
    return load_artifact(text)


def write_artifact(path: Union[str, Path], items: Union[ArtifactItem, Sequence[ArtifactItem]]) -> None:
    """
    Write an artifact to a file, or to standard output when ``path`` is ``-``.

    Nothing is written if the items cannot be serialized.
    """
    text = dump_artifact(items)
    if str(path) == "-":
        sys.stdout.write(text)
        sys.stdout.flush()
        return
    Path(path).write_text(text, encoding="utf-8")
