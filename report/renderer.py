"""
Report renderer: turn a QueryResult into JSON, Markdown, CSV, plain text or HTML.
HTML is rendered through the Jinja2 template report/templates/query_result.html.j2.
"""

import csv
import io
import json
import os
from typing import Any, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from query.executor import QueryResult

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')


def _format_value(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def _flatten_row(row: dict) -> dict:
    """Flatten one level of nesting: {'averages': {'total': 1}} -> {'average_total': 1}."""
    flat = {}
    for key, value in row.items():
        if isinstance(value, dict):
            prefix = key[:-1] if key.endswith('s') else key
            for sub_key, sub_value in value.items():
                flat[f"{prefix}_{sub_key}"] = sub_value
        else:
            flat[key] = value
    return flat


def result_table(result: QueryResult) -> Tuple[List[str], List[List[Any]]]:
    """Return (header, rows) for any result shape; both are empty when there is no data."""
    data = result.data
    if not data:
        return [], []
    if isinstance(data, list):
        flat_rows = [_flatten_row(r) if isinstance(r, dict) else {'value': r} for r in data]
        header: List[str] = []
        for row in flat_rows:
            for key in row:
                if key not in header:
                    header.append(key)
        return header, [[row.get(k) for k in header] for row in flat_rows]
    if isinstance(data, dict):
        if all(isinstance(v, dict) for v in data.values()):
            columns = list(data)
            fields: List[str] = []
            for inner in data.values():
                for key in inner:
                    if key not in fields:
                        fields.append(key)
            return ['field'] + columns, [[f] + [data[c].get(f) for c in columns] for f in fields]
        return ['metric', 'value'], [[k, v] for k, v in data.items()]
    return ['value'], [[data]]


def render_json(result: QueryResult) -> str:
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


def render_csv(result: QueryResult) -> str:
    header, rows = result_table(result)
    output = io.StringIO()
    writer = csv.writer(output)
    if header:
        writer.writerow(header)
    for row in rows:
        writer.writerow([_format_value(v) for v in row])
    return output.getvalue()


def render_markdown(result: QueryResult) -> str:
    md = [f"# {result.query}", "", f"_{result.message}_", ""]
    header, rows = result_table(result)
    if header:
        md.append("| " + " | ".join(header) + " |")
        md.append("|" + "---|" * len(header))
        for row in rows:
            md.append("| " + " | ".join(_format_value(v) for v in row) + " |")
        md.append("")
    if result.summary:
        md.append("## Summary")
        md.append("")
        for key, value in result.summary.items():
            md.append(f"- {key}: **{_format_value(value)}**")
        md.append("")
    if result.insights:
        md.append("## Insights")
        md.append("")
        for sentence in result.insights:
            md.append(f"- {sentence}")
        md.append("")
    return "\n".join(md)


def render_text(result: QueryResult) -> str:
    lines = [result.message]
    header, rows = result_table(result)
    if header:
        cells = [header] + [[_format_value(v) for v in row] for row in rows]
        widths = [max(len(str(r[i])) for r in cells) for i in range(len(header))]
        for r in cells:
            lines.append("  ".join(str(c).ljust(w) for c, w in zip(r, widths)).rstrip())
    for sentence in result.insights or []:
        lines.append(f"* {sentence}")
    return "\n".join(lines)


def render_html(result: QueryResult, generated_at: Optional[str] = None) -> str:
    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml', 'j2']))
    env.filters['fmt'] = _format_value
    tmpl = env.get_template('query_result.html.j2')
    header, rows = result_table(result)
    return tmpl.render(result=result, header=header, rows=rows, generated_at=generated_at)


def render(result: QueryResult, fmt: str = 'text', generated_at: Optional[str] = None) -> str:
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(result)
    if fmt_l == 'csv':
        return render_csv(result)
    if fmt_l in ('html', 'htm'):
        return render_html(result, generated_at=generated_at)
    if fmt_l == 'json':
        return render_json(result)
    return render_text(result)
