"""taskflow_data.field_mask — Allow-listed partial updates.

A ``FieldMask`` maps caller-facing field names to stored attribute names.
``compile`` turns a patch into one DynamoDB ``UpdateExpression``:

    * fields outside the allow-list are dropped,
    * a value of ``None`` removes the attribute, except on required fields,
      where ``None`` or a blank string raises ``ValidationError``,
    * the ``updatedAt`` stamp is always set.

When nothing survives the mask the result is ``None`` and the caller reads
the current record instead of writing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from taskflow_data.errors import ValidationError

logger = logging.getLogger(__name__)

_UPDATED_AT = "updatedAt"


@dataclass(frozen=True)
class UpdatePlan:
    expression: str
    names: Dict[str, str]
    values: Dict[str, Any]
    changed: List[str] = field(default_factory=list)


class FieldMask:
    def __init__(
        self,
        allowed: Mapping[str, str],
        *,
        immutable: Iterable[str] = (),
        required: Iterable[str] = (),
        stamp_attribute: str = _UPDATED_AT,
    ) -> None:
        self._allowed = dict(allowed)
        self._immutable = frozenset(immutable)
        self._required = frozenset(required)
        unknown = self._required.difference(self._allowed)
        if unknown:
            raise ValueError(f"Required fields missing from the allow-list: {sorted(unknown)}")
        self._stamp = stamp_attribute

    @property
    def fields(self) -> List[str]:
        return sorted(self._allowed)

    def filter(self, patch: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Return ``{attribute: value}`` for the allowed fields in ``patch``.

        Raises ``ValidationError`` when a required field is ``None`` or blank.
        """
        out: Dict[str, Any] = {}
        for key, value in (patch or {}).items():
            if key in self._immutable:
                logger.warning("[WARNING] Ignoring immutable field '%s' in update", key)
                continue
            attr = self._allowed.get(key)
            if attr is None:
                logger.debug("Ignoring unrecognised field '%s' in update", key)
                continue
            if key in self._required and (value is None or (isinstance(value, str) and not value.strip())):
                raise ValidationError(f"'{key}' is required and cannot be cleared")
            out[attr] = value
        return out

    def compile(self, patch: Optional[Mapping[str, Any]], now: str) -> Optional[UpdatePlan]:
        changes = self.filter(patch)
        if not changes:
            return None

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        set_parts: List[str] = []
        remove_parts: List[str] = []
        for i, (attr, value) in enumerate(sorted(changes.items())):
            names[f"#f{i}"] = attr
            if value is None:
                remove_parts.append(f"#f{i}")
            else:
                values[f":f{i}"] = value
                set_parts.append(f"#f{i} = :f{i}")

        names["#stamp"] = self._stamp
        values[":stamp"] = now
        set_parts.append("#stamp = :stamp")

        expression = "SET " + ", ".join(set_parts)
        if remove_parts:
            expression += " REMOVE " + ", ".join(remove_parts)
        return UpdatePlan(expression=expression, names=names, values=values, changed=sorted(changes))
