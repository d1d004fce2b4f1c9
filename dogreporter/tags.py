"""Tag composition and the optional per-metric tagging capability."""
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable


@runtime_checkable
class Tagged(Protocol):
    """Capability a metric may implement to carry its own tags.

    ``override_name`` returns the name to publish instead of the registry
    key, or ``None`` to keep the registry key.
    """

    def tags(self) -> List[str]:
        ...

    def override_name(self) -> Optional[str]:
        ...


def merge_tags(base: Sequence[str], extra: Optional[Sequence[str]]) -> Sequence[str]:
    """Append ``extra`` after ``base``.

    Returns ``base`` itself when there is nothing to add. Neither input is
    mutated and duplicate tags are kept.
    """
    if not extra:
        return base
    return list(base) + list(extra)


def format_tag(key: str, value=None) -> str:
    """Format a ``key:value`` tag, or a bare tag when ``value`` is ``None``."""
    if value is None:
        return str(key)
    return f"{key}:{value}"


def normalize_tags(tags: Union[None, Sequence[str], Mapping[str, object]]) -> List[str]:
    """Accept a list of tag strings or a mapping and return tag strings."""
    if not tags:
        return []
    if isinstance(tags, Mapping):
        return [format_tag(k, v) for k, v in tags.items()]
    return [str(t) for t in tags]


def split_tag(tag: str) -> Tuple[str, Optional[str]]:
    """Split ``key:value`` into its parts; bare tags have no value."""
    key, sep, value = tag.partition(":")
    if not sep:
        return tag, None
    return key, value


def tags_to_labels(tags: Sequence[str]) -> Dict[str, str]:
    """Convert tags into a label mapping.

    Bare tags map to ``"true"``. When a key repeats, the last value wins.
    """
    labels: Dict[str, str] = {}
    for tag in tags:
        key, value = split_tag(tag)
        labels[key] = "true" if value is None else value
    return labels
