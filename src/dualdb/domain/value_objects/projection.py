"""Field projections for ``find``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from dualdb.domain.errors import InvalidProjection
from dualdb.domain.value_objects.field_path import MISSING, resolve, set_path, split_path

ID_FIELD = "_id"


@dataclass(frozen=True)
class Projection:
    """Inclusion or exclusion of field paths.

    ``_id`` is kept unless explicitly excluded, in either mode.
    """

    paths: tuple[str, ...]
    include: bool = True
    include_id: bool = True

    @classmethod
    def of(cls, spec: Projection | Sequence[str] | Mapping[str, Any]) -> Projection:
        """Normalise a list of paths or a ``{path: 1|0}`` map.

        Raises:
            InvalidProjection: On mixed inclusion/exclusion or a bad path.
        """
        if isinstance(spec, Projection):
            return spec
        if isinstance(spec, Mapping):
            include_id = bool(spec.get(ID_FIELD, True))
            flags = {p: bool(v) for p, v in spec.items() if p != ID_FIELD}
            modes = set(flags.values())
            if len(modes) > 1:
                raise InvalidProjection("Projection cannot mix inclusion and exclusion")
            include = modes.pop() if modes else (ID_FIELD in spec and include_id)
            paths = tuple(flags)
        elif isinstance(spec, (list, tuple)):
            include_id = True
            include = True
            paths = tuple(p for p in spec if p != ID_FIELD)
        else:
            raise InvalidProjection(f"Unsupported projection: {spec!r}")

        for path in paths:
            try:
                split_path(path)
            except ValueError as e:
                raise InvalidProjection(str(e)) from e
        return cls(paths=paths, include=include, include_id=include_id)

    def apply(self, document: dict[str, Any]) -> dict[str, Any]:
        """Return a new document shaped by this projection."""
        if self.include:
            out: dict[str, Any] = {}
            if self.include_id and ID_FIELD in document:
                out[ID_FIELD] = document[ID_FIELD]
            for path in self.paths:
                value = resolve(document, path)
                if value is not MISSING:
                    set_path(out, path, value)
            return out

        out = {k: v for k, v in document.items()}
        if not self.include_id:
            out.pop(ID_FIELD, None)
        for path in self.paths:
            segments = split_path(path)
            if len(segments) == 1:
                out.pop(path, None)
                continue
            # copy the parents before removing a nested key
            parent = out
            for segment in segments[:-1]:
                child = parent.get(segment) if isinstance(parent, dict) else None
                if not isinstance(child, dict):
                    parent = None
                    break
                child = dict(child)
                parent[segment] = child
                parent = child
            if isinstance(parent, dict):
                parent.pop(segments[-1], None)
        return out
