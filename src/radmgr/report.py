# src/radmgr/report.py
from __future__ import annotations

import re
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from .clients import list_clients
from .config import Settings
from .db import Psql
from .logging import get_logger
from .system import find_config_dir
from .transports.base import ShellHost
from .users import UserStore, open_user_store

__all__ = ["safe_sheet_name", "collect_tables", "write_workbook", "write_csvs", "export_workbook"]

Table = Tuple[str, str, pd.DataFrame]     # (title, source, frame)
MASK = "********"


def safe_sheet_name(name: str) -> str:
    bad = r'[:\\/*?[\]]'
    s = re.sub(bad, "_", name)
    return s[:31] if len(s) > 31 else s


def collect_tables(host: ShellHost, settings: Settings, *, store: Optional[UserStore] = None,
                   psql: Optional[Psql] = None, include_passwords: bool = False) -> List[Table]:
    store = store or open_user_store(host, settings)
    tables: List[Table] = []

    users = pd.DataFrame(
        [asdict(u) for u in store.list_users()],
        columns=["username", "password", "group", "simultaneous_use"],
    )
    if not include_passwords and not users.empty:
        users["password"] = MASK
    tables.append(("Users", store.kind, users))
    tables.append(("Groups", store.kind, pd.DataFrame({"group": store.list_groups()})))

    config_dir = find_config_dir(host, settings, required=False)
    if config_dir:
        clients, nas = list_clients(host, config_dir, psql or Psql(host, settings))
        frame = pd.DataFrame(
            [asdict(c) for c in clients],
            columns=["shortname", "ipaddr", "secret", "nastype", "require_message_authenticator"],
        )
        if not include_passwords and not frame.empty:
            frame["secret"] = MASK
        tables.append(("Clients", "clients.conf", frame))
        if nas:
            nas_frame = pd.DataFrame([asdict(n) for n in nas])
            if not include_passwords:
                nas_frame["secret"] = MASK
            tables.append(("NAS", "nas table", nas_frame))
    return tables


def write_workbook(filename: str, results: List[Table]) -> None:
    with pd.ExcelWriter(filename, engine="xlsxwriter") as writer:
        wb = writer.book
        toc = wb.add_worksheet("Table_of_Contents")
        writer.sheets["Table_of_Contents"] = toc
        toc.set_column("A:A", len("Table of Contents")+4)
        toc.set_column("B:C", 16)
        header_fmt = wb.add_format({"bold": True, "font_color": "blue", "font_size": 14})
        link_fmt = wb.add_format({"font_color": "blue", "underline": 1})
        toc.write("A1", "Table of Contents", header_fmt)
        toc.write("A2", "Sheet"); toc.write("B2", "Source"); toc.write("C2", "Rows")
        toc_row = 3
        for title, source, df in results:
            sheet = safe_sheet_name(title)
            df.to_excel(writer, sheet_name=sheet, startrow=2, index=False)
            ws = writer.sheets[sheet]
            for i, col in enumerate(df.columns):
                if df.empty:
                    max_len = len(str(col))
                else:
                    max_len = max(int(df[col].astype(str).map(len).max()), len(str(col)))
                ws.set_column(i, i, max_len + 2)
            ws.write_url("A1", "internal:'Table_of_Contents'!A1", link_fmt, "← Back to TOC")
            toc.write_url(f"A{toc_row}", f"internal:'{sheet}'!A1", link_fmt, title)
            toc.write(f"B{toc_row}", source)
            toc.write(f"C{toc_row}", len(df))
            toc_row += 1


def write_csvs(path: Path, results: List[Table]) -> List[Path]:
    """users.csv -> users_users.csv, users_groups.csv, ..."""
    out: List[Path] = []
    for title, _, df in results:
        target = path.with_name(f"{path.stem}_{title.lower()}.csv")
        df.to_csv(target, index=False)
        out.append(target)
    return out


def export_workbook(host: ShellHost, settings: Settings, path: str | Path, *,
                    include_passwords: bool = False, store: Optional[UserStore] = None,
                    psql: Optional[Psql] = None) -> List[Path]:
    """Users, groups and clients as .xlsx (with a TOC sheet) or one CSV per table."""
    path = Path(path)
    if path.suffix.lower() not in (".xlsx", ".csv"):
        raise ValueError(f"Unsupported export format {path.suffix!r}: use .xlsx or .csv")
    path.parent.mkdir(parents=True, exist_ok=True)

    tables = collect_tables(host, settings, store=store, psql=psql, include_passwords=include_passwords)
    if path.suffix.lower() == ".csv":
        written = write_csvs(path, tables)
    else:
        write_workbook(str(path), tables)
        written = [path]
    get_logger().info(f"Exported {len(tables)} tables to {', '.join(str(p) for p in written)}")
    return written
