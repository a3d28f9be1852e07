"""Line-oriented label command templates.

A template is one printer directive per line with ``{variable}`` placeholders.
Templates are checked when they are loaded and rendered in a single pass; an
unknown directive or variable is a :class:`RenderError`, never literal text on
a label.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from app.exceptions import RenderError

PLACEHOLDER = re.compile(r'\{([a-z_][a-z0-9_]*)\}')
_STRAY_BRACE = re.compile(r'[{}]')

DIRECTIVES = frozenset({'m', 'j', 'h', 'O', 'J', 'S', 'H', 'T', 'B', 'G', 'GI', 'A', 'E'})

LABEL_VARIABLES = frozenset(
    {
        'company_name',
        'order_id',
        'order_number',
        'customer_name',
        'customer_address',
        'customer_phone',
        'shipping_company',
        'area',
        'shipping_date',
        'box_number',
        'box_count',
        'dpi',
        'label_width_dots',
        'label_height_dots',
    }
)

DEFAULT_TEMPLATE = """\
m m
j
h {dpi}
O R
J
S l1;0,0,{label_width_dots},{label_height_dots},100
H {label_height_dots},0,T,P
; sender
T 10,20,0,3,pt10:"{company_name}"
; recipient
T 10,50,0,3,pt15,b:"{customer_name}"
T 10,80,0,3,pt12:"{customer_address}"
T 10,110,0,3,pt12:"Phone: {customer_phone}"
T 10,150,0,3,pt12,b:"Carrier: {shipping_company}"
T 10,180,0,3,pt20,b:"BOX {box_number} OF {box_count}"
T 10,220,0,3,pt12:"Order: {order_number}  Ship date: {shipping_date}"
B 10,250,0,CODE128,60,0.5;{order_number}
A 1
O
E
"""


def _directive(line: str) -> str:
    return line.split(None, 1)[0]


@dataclass(frozen=True)
class LabelTemplate:
    source: str

    @property
    def variables(self) -> frozenset[str]:
        return frozenset(PLACEHOLDER.findall(self.source))

    @classmethod
    def parse(cls, source: str) -> LabelTemplate:
        for line_number, raw_line in enumerate(source.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith(';'):
                continue
            directive = _directive(line)
            if directive not in DIRECTIVES:
                raise RenderError(f'Line {line_number}: unknown label directive {directive!r}')
            if _STRAY_BRACE.search(PLACEHOLDER.sub('', line)):
                raise RenderError(f'Line {line_number}: malformed placeholder in {line!r}')
            unknown = sorted(set(PLACEHOLDER.findall(line)) - LABEL_VARIABLES)
            if unknown:
                raise RenderError(f'Line {line_number}: unknown label variables {", ".join(unknown)}')
        return cls(source=source)

    @classmethod
    def load(cls, path: str | Path) -> LabelTemplate:
        try:
            source = Path(path).read_text(encoding='utf-8')
        except OSError as exc:
            raise RenderError(f'Cannot read label template {path}: {exc}') from exc
        return cls.parse(source)

    def render(self, values: Mapping[str, object], *, box_number: int | None = None) -> str:
        missing = sorted(name for name in self.variables if values.get(name) is None)
        if missing:
            raise RenderError(f'Label variables not set: {", ".join(missing)}', box_number=box_number)
        return PLACEHOLDER.sub(lambda match: sanitize(values[match.group(1)]), self.source)


def sanitize(value: object) -> str:
    text = str(value)
    # A value must stay inside its directive line and its quoted field.
    return ' '.join(text.replace('"', "'").split())
