"""
Condition mapping compiler.

A condition mapping pairs a key (field name, optionally followed by an operator
suffix such as ``"age >"`` or ``"username ILIKE"``) with a value:

	{"age >": 18, "username ILIKE": "jo%", "tags": ["a", "b"]}

The reserved key ``or`` holds a sequence of condition mappings (which may
nest ``or`` again), each compiled to an AND-joined conjunction, the
conjunctions being OR-joined.

Every operator renders two ways:
	- literal SQL text, used by the raw-SQL query path;
	- a psycopg2 ``sql.Composable`` with bound parameters, used by the structured
	  find primitive of ``PSQLClient``.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

from psycopg2 import sql
from psycopg2.extras import Json

from pg_collections.exceptions import InvalidFormat

logger = logging.getLogger(__name__)

OR_KEY = "or"
JSONB_OPERATORS = ("->", "#>")


def is_sequence(value: Any) -> bool:
	return isinstance(value, (list, tuple))


def is_jsonb_path(key: str) -> bool:
	return any(op in key for op in JSONB_OPERATORS)


def _to_json(value: Any) -> str:
	return json.dumps(value, separators=(",", ":"), default=str)


def _text(value: Any) -> str:
	if value is True:
		return "true"
	if value is False:
		return "false"
	if value is None:
		return "null"
	if isinstance(value, Mapping):
		return _to_json(value)
	return str(value)


def _quoted(value: Any) -> str:
	return "'" + _text(value).replace("'", "''") + "'"


def _json_items(value: Any) -> str:
	"""JSON-encode a value list with the outer brackets swapped for parentheses."""
	encoded = _to_json(list(value) if is_sequence(value) else value)
	if encoded.startswith("[") and encoded.endswith("]"):
		encoded = encoded[1:-1]
	return f"({encoded})"


def _ident(field: str) -> sql.Identifier:
	return sql.Identifier(*field.split("."))


# ---------- Literal renderers ----------
def _render_membership(negate: bool) -> Callable[[str, Any], str]:
	def render(field: str, value: Any) -> str:
		if is_sequence(value) and not value:
			return "TRUE" if negate else "FALSE"
		keyword = "NOT IN" if negate else "IN"
		return f"{field} {keyword} {_json_items(value)}"
	return render


def _render_equals(field: str, value: Any) -> str:
	if value is None:
		return f"{field} IS NULL"
	return f"{field} = {_quoted(value)}"


# ---------- Bound renderers ----------
def _bind_template(template: str) -> Callable[[str, Any], tuple[sql.Composable, list]]:
	def bind(field: str, value: Any) -> tuple[sql.Composable, list]:
		return sql.SQL(template).format(_ident(field), sql.Placeholder()), [value]
	return bind


def _bind_membership(negate: bool) -> Callable[[str, Any], tuple[sql.Composable, list]]:
	def bind(field: str, value: Any) -> tuple[sql.Composable, list]:
		items = tuple(value) if is_sequence(value) else (value,)
		if not items:
			return sql.SQL("TRUE" if negate else "FALSE"), []
		keyword = "NOT IN" if negate else "IN"
		return sql.SQL("{} %s {}" % keyword).format(_ident(field), sql.Placeholder()), [items]
	return bind


def _bind_equals(field: str, value: Any) -> tuple[sql.Composable, list]:
	if value is None:
		return sql.SQL("{} IS NULL").format(_ident(field)), []
	if isinstance(value, Mapping):
		value = Json(value)
	return sql.SQL("{} = {}").format(_ident(field), sql.Placeholder()), [value]


@dataclass(frozen=True)
class ConditionOperator:
	"""
	One entry of the operator table.

	Each pattern must expose an ``op`` group; the field is whatever precedes it.
	"""
	name: str
	patterns: tuple[re.Pattern, ...]
	render: Callable[[str, Any], str]
	bind: Callable[[str, Any], tuple[sql.Composable, list]]
	sequence_default: bool = False

	def search(self, key: str) -> re.Match | None:
		for pattern in self.patterns:
			match = pattern.search(key)
			if match:
				return match
		return None


def _patterns(*expressions: str) -> tuple[re.Pattern, ...]:
	return tuple(re.compile(e, flags=re.IGNORECASE) for e in expressions)


# Order matters: the first matching entry wins.
OPERATORS: tuple[ConditionOperator, ...] = (
	ConditionOperator(
		"gt", _patterns(r"\s+(?P<op>>)$"),
		lambda f, v: f"{f} > {_text(v)}",
		_bind_template("{} > {}"),
	),
	ConditionOperator(
		"lt", _patterns(r"\s+(?P<op><)$"),
		lambda f, v: f"{f} < {_text(v)}",
		_bind_template("{} < {}"),
	),
	ConditionOperator(
		"lte", _patterns(r"\s+(?P<op><=)$"),
		lambda f, v: f"{f} <= {_text(v)}",
		_bind_template("{} <= {}"),
	),
	ConditionOperator(
		"gte", _patterns(r"\s+(?P<op>>=)$"),
		lambda f, v: f"{f} >= {_text(v)}",
		_bind_template("{} >= {}"),
	),
	ConditionOperator(
		"not_in", _patterns(r"\s+(?P<op><>)$", r"\s+(?P<op>NOT\s+IN)$"),
		_render_membership(negate=True),
		_bind_membership(negate=True),
	),
	ConditionOperator(
		"is_not", _patterns(r"\s+(?P<op>!=)$", r"\s+(?P<op>!)$", r"\s+(?P<op>IS\s+NOT)$"),
		lambda f, v: f"{f} NOT {_to_json(v)}",
		_bind_template("{} IS DISTINCT FROM {}"),
	),
	ConditionOperator(
		"in", _patterns(r"^\S+(?P<op> IN)$"),
		_render_membership(negate=False),
		_bind_membership(negate=False),
		sequence_default=True,
	),
	ConditionOperator(
		"like", _patterns(r"^\S+(?P<op> LIKE)$", r"\s+(?P<op>~~)$"),
		lambda f, v: f"{f} LIKE {_quoted(v)}",
		_bind_template("{} LIKE {}"),
	),
	ConditionOperator(
		"not_like", _patterns(r"\s+(?P<op>NOT\s+LIKE)$", r"\s+(?P<op>!~~)$"),
		lambda f, v: f"{f} NOT LIKE {_quoted(v)}",
		_bind_template("{} NOT LIKE {}"),
	),
	ConditionOperator(
		"ilike", _patterns(r"^\S+(?P<op> ILIKE)$"),
		lambda f, v: f"LOWER({f}) LIKE LOWER({_quoted(v)})",
		_bind_template("LOWER({}) LIKE LOWER({})"),
	),
	ConditionOperator(
		"not_ilike", _patterns(r"\s+(?P<op>NOT\s+ILIKE)$"),
		lambda f, v: f"LOWER({f}) NOT LIKE LOWER({_quoted(v)})",
		_bind_template("LOWER({}) NOT LIKE LOWER({})"),
	),
	ConditionOperator(
		"similar_to", _patterns(r"^\S+(?P<op>\s+SIMILAR\s+TO)$"),
		lambda f, v: f"{f} SIMILAR TO {_quoted(v)}",
		_bind_template("{} SIMILAR TO {}"),
	),
	ConditionOperator(
		"not_similar_to", _patterns(r"\s+(?P<op>NOT\s+SIMILAR\s+TO)$"),
		lambda f, v: f"{f} NOT SIMILAR TO {_quoted(v)}",
		_bind_template("{} NOT SIMILAR TO {}"),
	),
)

EQUALS = ConditionOperator("eq", (), _render_equals, _bind_equals)


def has_operator_suffix(key: str) -> bool:
	return any(op.search(key) for op in OPERATORS)


def match_operator(key: str, value: Any) -> tuple[ConditionOperator, str]:
	"""
	Resolve the operator for a condition key.

	Returns (operator, field) where field is the key stripped of its suffix.
	"""
	suffixed: bool | None = None
	for op in OPERATORS:
		match = op.search(key)
		if match:
			return op, key[:match.start("op")].strip()
		if op.sequence_default and is_sequence(value):
			if suffixed is None:
				suffixed = has_operator_suffix(key)
			if not suffixed:
				return op, key
	return EQUALS, key


def compile_predicate(key: str, value: Any) -> str:
	op, field = match_operator(key, value)
	return op.render(field, value)


def _members(conditions: Mapping) -> list[Mapping] | None:
	members = conditions.get(OR_KEY)
	if members is None:
		return None
	if not is_sequence(members) or not all(isinstance(m, Mapping) for m in members):
		raise InvalidFormat(OR_KEY)
	return list(members)


def compile_conditions(conditions: Mapping) -> list[str]:
	"""Compile every non-``or`` entry to a predicate, keeping mapping order."""
	return [compile_predicate(k, v) for k, v in conditions.items() if k != OR_KEY]


def compile_where(conditions: Mapping | None) -> str:
	"""
	Compile a full condition mapping to predicate text (no WHERE keyword).

	Returns an empty string when nothing constrains the query.
	"""
	if not conditions:
		return ""
	conjunction = " AND ".join(compile_conditions(conditions))
	members = _members(conditions)
	if members is None:
		return conjunction

	alternatives = [compile_where(m) for m in members]
	disjunction = " OR ".join(a for a in alternatives if a)
	if not conjunction:
		return disjunction
	if not disjunction:
		return conjunction
	return f"{conjunction} AND ({disjunction})"


def where_clause(conditions: Mapping | None) -> str:
	predicate = compile_where(conditions)
	return f" WHERE {predicate}" if predicate else ""


def _bind_conjunction(conditions: Mapping) -> tuple[list[sql.Composable], list]:
	parts: list[sql.Composable] = []
	params: list = []
	for key, value in conditions.items():
		if key == OR_KEY:
			continue
		op, field = match_operator(key, value)
		part, values = op.bind(field, value)
		parts.append(part)
		params.extend(values)
	return parts, params


def compile_bound_where(conditions: Mapping | None) -> tuple[sql.Composable | None, list]:
	"""
	Bound-parameter counterpart of ``compile_where``.

	Returns (predicate or None, params).
	"""
	if not conditions:
		return None, []
	parts, params = _bind_conjunction(conditions)
	members = _members(conditions)

	if members:
		alternatives: list[sql.Composable] = []
		for member in members:
			member_predicate, member_params = compile_bound_where(member)
			if member_predicate is None:
				continue
			alternatives.append(sql.SQL("(") + member_predicate + sql.SQL(")"))
			params.extend(member_params)
		if alternatives:
			parts.append(sql.SQL("(") + sql.SQL(" OR ").join(alternatives) + sql.SQL(")"))

	if not parts:
		return None, []
	return sql.SQL(" AND ").join(parts), params


def _condition_keys(conditions: Mapping) -> list[str]:
	keys = [k for k in conditions if k != OR_KEY]
	for member in _members(conditions) or []:
		keys.extend(_condition_keys(member))
	return keys


def requires_raw_sql(conditions: Mapping | None, options: Mapping | None = None) -> bool:
	"""True when a key, an ``or`` member key (at any depth) or an ORDER field uses a JSONB path."""
	keys = _condition_keys(conditions or {})
	for order in (options or {}).get("order") or []:
		keys.append(str(order.get("field", "")))
	return any(is_jsonb_path(k) for k in keys)
