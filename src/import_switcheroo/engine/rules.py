"""
Downgrade Rules and their Registry.

Each rule removes one piece of syntax introduced at a given feature level,
expressing the same meaning with constructs older interpreters understand. A
rule is a libcst `ContextAwareTransformer`; imports it needs are requested
through `AddImportsVisitor` and injected once after all rules ran.

Rules self-register through the `register_rule` decorator:

.. code-block:: python

    @register_rule
    class MyRule(DowngradeRule):
      name = "my_rule"
      introduced_in = 31100
"""

from typing import ClassVar, Dict, List, Optional, Sequence, Type

import libcst as cst
from libcst.codemod import ContextAwareTransformer
from libcst.codemod.visitors import AddImportsVisitor

from import_switcheroo.errors import ConfigurationError
from import_switcheroo.versions import feature_level_from_version_id


class DowngradeRule(ContextAwareTransformer):
  """
  Base class for all downgrade rules.

  Attributes:
      name: Unique identifier used in configuration.
      introduced_in: Feature level (e.g. 31000) of the syntax this rule removes.
  """

  name: ClassVar[str] = ""
  introduced_in: ClassVar[int] = 0

  def require_import(self, module: str, obj: Optional[str] = None) -> None:
    """Requests `from module import obj` (or `import module`) in the output."""
    AddImportsVisitor.add_needed_import(self.context, module, obj)


class AnnotationRule(DowngradeRule):
  """A rule that only acts inside annotations."""

  def __init__(self, context):
    super().__init__(context)
    self._annotation_depth = 0

  @property
  def in_annotation(self) -> bool:
    return self._annotation_depth > 0

  def visit_Annotation(self, node: cst.Annotation) -> bool:
    self._annotation_depth += 1
    return True

  def leave_Annotation(self, original_node: cst.Annotation, updated_node: cst.Annotation) -> cst.Annotation:
    self._annotation_depth -= 1
    return updated_node


_RULES: Dict[str, Type[DowngradeRule]] = {}


def register_rule(rule: Type[DowngradeRule]) -> Type[DowngradeRule]:
  """
  Class decorator adding a rule to the registry.

  Raises:
      ValueError: If the rule has no name or the name is already taken by another class.
  """
  if not rule.name:
    raise ValueError(f"Rule {rule.__name__} must define a name")
  existing = _RULES.get(rule.name)
  if existing is not None and existing is not rule:
    raise ValueError(f"Duplicate rule name '{rule.name}'")
  _RULES[rule.name] = rule
  return rule


def available_rules() -> List[str]:
  return sorted(_RULES)


def rules_for(
  source_version: int, target_version: int, names: Optional[Sequence[str]] = None
) -> List[Type[DowngradeRule]]:
  """
  Selects the rules needed to run code written for `source_version` on `target_version`.

  A rule applies when its feature level is newer than the target but not newer
  than the source. Rules run newest feature first, so constructs produced by
  one rule can still be lowered by an older one.

  Args:
      source_version: Version id the code is written for.
      target_version: Version id that will run it.
      names: Optional explicit selection; unknown names are a configuration error.

  Returns:
      List[Type[DowngradeRule]]: Rule classes in application order.
  """
  source_level = feature_level_from_version_id(source_version)
  target_level = feature_level_from_version_id(target_version)

  if names is not None:
    unknown = [n for n in names if n not in _RULES]
    if unknown:
      raise ConfigurationError(f"Unknown rules: {unknown}. Available: {available_rules()}", key="rules")
    candidates = [_RULES[n] for n in names]
  else:
    candidates = list(_RULES.values())

  selected = [r for r in candidates if target_level < r.introduced_in <= source_level]
  return sorted(selected, key=lambda r: (-r.introduced_in, r.name))


# --- Rules ---


def _subscript(name: str, members: Sequence[cst.BaseExpression]) -> cst.Subscript:
  return cst.Subscript(
    value=cst.Name(name),
    slice=[cst.SubscriptElement(slice=cst.Index(value=m)) for m in members],
  )


def _is_union(expr: cst.BaseExpression) -> bool:
  return isinstance(expr, cst.BinaryOperation) and isinstance(expr.operator, cst.BitOr)


def _flatten_union(expr: cst.BaseExpression) -> List[cst.BaseExpression]:
  if _is_union(expr):
    return _flatten_union(expr.left) + _flatten_union(expr.right)
  return [expr]


def _is_none(expr: cst.BaseExpression) -> bool:
  return isinstance(expr, cst.Name) and expr.value == "None"


@register_rule
class Pep604UnionRule(DowngradeRule):
  """
  ``int | None`` → ``Optional[int]``; ``int | str`` → ``Union[int, str]``.

  Only annotations are rewritten: at runtime ``X | Y`` may be a legitimate
  ``__or__`` call.
  """

  name = "pep604_unions"
  introduced_in = 31000

  def leave_Annotation(self, original_node: cst.Annotation, updated_node: cst.Annotation) -> cst.Annotation:
    return updated_node.with_changes(annotation=self._rewrite(updated_node.annotation))

  def _rewrite(self, expr: cst.BaseExpression) -> cst.BaseExpression:
    if _is_union(expr):
      members = [self._rewrite(m).with_changes(lpar=[], rpar=[]) for m in _flatten_union(expr)]
      concrete = [m for m in members if not _is_none(m)]
      if len(concrete) == 1 and len(members) == 2:
        self.require_import("typing", "Optional")
        return _subscript("Optional", concrete)
      self.require_import("typing", "Union")
      return _subscript("Union", members)

    if isinstance(expr, cst.Subscript):
      elements = []
      for element in expr.slice:
        if isinstance(element.slice, cst.Index):
          element = element.with_changes(slice=element.slice.with_changes(value=self._rewrite(element.slice.value)))
        elements.append(element)
      return expr.with_changes(slice=elements)

    return expr


_PEP585_ALIASES = {
  "list": "List",
  "dict": "Dict",
  "set": "Set",
  "frozenset": "FrozenSet",
  "tuple": "Tuple",
  "type": "Type",
}


@register_rule
class Pep585GenericsRule(AnnotationRule):
  """``list[int]`` → ``List[int]`` (and dict, set, frozenset, tuple, type) in annotations."""

  name = "pep585_generics"
  introduced_in = 30900

  def leave_Subscript(self, original_node: cst.Subscript, updated_node: cst.Subscript) -> cst.Subscript:
    if not self.in_annotation or not isinstance(updated_node.value, cst.Name):
      return updated_node
    alias = _PEP585_ALIASES.get(updated_node.value.value)
    if alias is None:
      return updated_node
    self.require_import("typing", alias)
    return updated_node.with_changes(value=cst.Name(alias))


def _is_pure(expr: cst.BaseExpression) -> bool:
  """Whether evaluating `expr` twice is safe (names, attributes, literals)."""
  if isinstance(expr, (cst.Name, cst.SimpleString, cst.Integer)):
    return True
  if isinstance(expr, cst.Attribute):
    return _is_pure(expr.value)
  return False


@register_rule
class StrRemovePrefixRule(DowngradeRule):
  """
  ``s.removeprefix(p)`` → ``(s[len(p):] if s.startswith(p) else s)``.

  ``removesuffix`` is handled the same way. Only side-effect free receivers and
  arguments are rewritten since both are evaluated more than once.
  """

  name = "str_removeprefix"
  introduced_in = 30900

  _TEMPLATES = {
    "removeprefix": "({s}[len({p}):] if {s}.startswith({p}) else {s})",
    "removesuffix": "({s}[:-len({p})] if {p} and {s}.endswith({p}) else {s})",
  }

  def leave_Call(self, original_node: cst.Call, updated_node: cst.Call) -> cst.BaseExpression:
    func = updated_node.func
    if not isinstance(func, cst.Attribute) or func.attr.value not in self._TEMPLATES:
      return updated_node
    if len(updated_node.args) != 1 or updated_node.args[0].keyword is not None or updated_node.args[0].star:
      return updated_node

    receiver, argument = func.value, updated_node.args[0].value
    if not (_is_pure(receiver) and _is_pure(argument)):
      return updated_node

    render = cst.Module(body=[]).code_for_node
    template = self._TEMPLATES[func.attr.value]
    return cst.parse_expression(template.format(s=render(receiver), p=render(argument)))
