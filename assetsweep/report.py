from __future__ import annotations

import csv
import html
import time
from pathlib import Path
from typing import Iterable

from assetsweep.models import Asset

ASSET_FIELDS = [
    "address",
    "hostname",
    "asset_type",
    "operating_system",
    "os_version",
    "mac_address",
    "manufacturer",
    "model",
    "cpu_model",
    "ram_size",
    "last_user",
    "online",
    "last_seen",
]
SUMMARY_FIELDS = ["asset_type", "count", "online"]
FORMATS = ("csv", "md", "html")


def _asset_rows(assets: Iterable[Asset]) -> list[dict]:
    rows = []
    for asset in assets:
        row = asset.model_dump(mode="json", include=set(ASSET_FIELDS))
        row["last_seen"] = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(asset.last_seen))
        row["online"] = "yes" if asset.online else "no"
        rows.append({name: "" if row.get(name) is None else row[name] for name in ASSET_FIELDS})
    return rows


def _summary_rows(assets: list[Asset]) -> list[dict]:
    counts: dict[str, list[int]] = {}
    for asset in assets:
        entry = counts.setdefault(asset.asset_type.value, [0, 0])
        entry[0] += 1
        if asset.online:
            entry[1] += 1
    return [
        {"asset_type": name, "count": total, "online": online}
        for name, (total, online) in sorted(counts.items(), key=lambda x: x[1][0], reverse=True)
    ]


def _write_csv(path: Path, rows: list[dict], fieldnames: list[str]) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def _markdown_table(title: str, rows: list[dict], fieldnames: list[str]) -> str:
    if not rows:
        return f"## {title}\n\n(no data)\n"
    header = "| " + " | ".join(fieldnames) + " |\n"
    sep = "| " + " | ".join(["---"] * len(fieldnames)) + " |\n"
    lines = [f"## {title}\n\n", header, sep]
    for row in rows:
        cells = (str(row.get(name, "")).replace("|", "\\|") for name in fieldnames)
        lines.append("| " + " | ".join(cells) + " |\n")
    lines.append("\n")
    return "".join(lines)


def _html_table(title: str, rows: list[dict], fieldnames: list[str]) -> str:
    if not rows:
        return f"<h2>{html.escape(title)}</h2><p>(no data)</p>"
    header = "".join(f"<th>{html.escape(name)}</th>" for name in fieldnames)
    body_rows = []
    for row in rows:
        cells = "".join(f"<td>{html.escape(str(row.get(name, '')))}</td>" for name in fieldnames)
        body_rows.append(f"<tr>{cells}</tr>")
    return f"<h2>{html.escape(title)}</h2><table><thead><tr>{header}</tr></thead><tbody>{''.join(body_rows)}</tbody></table>"


def export_inventory(assets: Iterable[Asset], fmt: str, output_path: str) -> list[str]:
    """Write the asset inventory and return the paths written.

    ``csv`` writes two files next to ``output_path`` (``*_assets.csv`` and
    ``*_summary.csv``); ``md`` and ``html`` write a single document.
    """
    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise ValueError(f"unsupported report format: {fmt}")

    assets = list(assets)
    output_file = Path(output_path)
    rows = _asset_rows(assets)
    summary = _summary_rows(assets)

    if fmt == "csv":
        stem = output_file.with_suffix("")
        assets_path = Path(f"{stem}_assets.csv")
        summary_path = Path(f"{stem}_summary.csv")
        _write_csv(assets_path, rows, ASSET_FIELDS)
        _write_csv(summary_path, summary, SUMMARY_FIELDS)
        return [str(assets_path), str(summary_path)]

    if fmt == "md":
        md = ["# Asset Inventory\n\n"]
        md.append(_markdown_table("Asset Types", summary, SUMMARY_FIELDS))
        md.append(_markdown_table("Assets", rows, ASSET_FIELDS))
        output_file.write_text("".join(md), encoding="utf-8")
        return [str(output_file)]

    page = ["<html><head><meta charset='utf-8'><title>Asset Inventory</title>"]
    page.append("<style>body{font-family:Arial,sans-serif}table{border-collapse:collapse}th,td{border:1px solid #ccc;padding:4px 8px}</style>")
    page.append("</head><body>")
    page.append(_html_table("Asset Types", summary, SUMMARY_FIELDS))
    page.append(_html_table("Assets", rows, ASSET_FIELDS))
    page.append("</body></html>")
    output_file.write_text("".join(page), encoding="utf-8")
    return [str(output_file)]
