"""
Templates for the extra fields extracted from pods, nodes, and VMs.

A template is a plain string with ``${...}`` placeholders, e.g.::

    "${_k8s.pod.namespace}/${_k8s.pod.name}"

The templates are compiled once when the agent starts, and are then only
rendered with the variables of a specific object. Rendering never fails:
the unknown variables are rendered as empty strings.
"""
import dataclasses
import re
from collections.abc import Mapping

PLACEHOLDER = re.compile(r'\$\{([^${}]*)\}')


class PatternError(ValueError):
    """ Raised when a template cannot be parsed. """


@dataclasses.dataclass(frozen=True)
class Pattern:
    template: str
    keys: tuple[str, ...] = ()

    @classmethod
    def compile(cls, template: str) -> "Pattern":
        keys = []
        for match in PLACEHOLDER.finditer(template):
            key = match.group(1).strip()
            if not key:
                raise PatternError(f"Empty placeholder in the template {template!r}.")
            keys.append(key)

        # Whatever is left after the well-formed placeholders must be placeholder-free.
        if '${' in PLACEHOLDER.sub('', template):
            raise PatternError(f"Unclosed placeholder in the template {template!r}.")
        return cls(template=template, keys=tuple(keys))

    @property
    def constant(self) -> bool:
        return not self.keys

    def render(self, values: Mapping[str, object]) -> str:
        def substitute(match: 're.Match[str]') -> str:
            value = values.get(match.group(1).strip())
            return '' if value is None else str(value)
        return PLACEHOLDER.sub(substitute, self.template)


def compile_all(
        templates: Mapping[str, str] | None,
) -> dict[str, Pattern]:
    """ Compile a mapping of field names to templates; fail on the first bad one. """
    return {name: Pattern.compile(template) for name, template in (templates or {}).items()}
