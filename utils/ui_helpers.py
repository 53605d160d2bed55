import os
import json
from typing import List, Any, Dict, Sequence
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode
    # unknown values are ignored; the current mode stays

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _cell(value: Any) -> str:
    return "" if value is None else str(value)

def print_list_result(rows: List[Dict[str, Any]], columns: Sequence[str], title: str, empty_message: str) -> None:
    """Print records according to the current output mode.
    - plain: one ' | '-separated line per record, or ``empty_message``
    - json: JSON array of the full records
    - rich: Rich table with the given columns
    """
    mode = get_output_mode()

    if not rows:
        # same message in every mode so scripts can rely on it
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for col in columns:
            table.add_column(col.replace("_", " ").title(), style="white", no_wrap=(col == "id"))
        for row in rows:
            table.add_row(*(_cell(row.get(col)) for col in columns))
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join(_cell(row.get(col)) for col in columns))

def print_record(record: Dict[str, Any], title: str) -> None:
    """Print a single record: key/value lines, a JSON object or a Rich panel."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(record, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {_cell(v)}" for k, v in record.items())
        _console.print(Panel.fit(content, title=title, border_style="green"))
    else:
        print(title)
        for key, value in record.items():
            print(f"{key.replace('_', ' ').title()}: {_cell(value)}")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics according to the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")
