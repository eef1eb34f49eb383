"""
Importa la planilla de pagos del personal desde un CSV.

Uso:
    python scripts/import_payroll.py --csv data/planilla.csv --user <user_id>
    python scripts/import_payroll.py --csv data/planilla.csv --user <user_id> --stop-on-error

Columnas reconocidas (encabezado obligatorio):
    entry_date, amount, share_a, share_b, share_c, notes, status
    year, month, week_of_month, weekday  (opcionales; se derivan de la fecha)

Cada fila se procesa con el mismo upsert por clave natural que la API:
las existentes se actualizan y las filas inválidas se informan al final.
"""

import argparse
import asyncio
import csv
import sys
from pathlib import Path
from uuid import UUID

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.database import async_session_factory  # noqa: E402
from app.schemas.payroll import (  # noqa: E402
    DistributionInput,
    PayrollBulkRequest,
    PayrollEntryInput,
)
from app.services.payroll_service import bulk_upsert  # noqa: E402


def _int_or_none(value: str | None) -> int | None:
    value = (value or "").strip()
    return int(value) if value else None


def _row_to_input(row: dict) -> PayrollEntryInput:
    shares = {
        key: row[key].strip()
        for key in ("share_a", "share_b", "share_c")
        if (row.get(key) or "").strip()
    }
    return PayrollEntryInput(
        entry_date=(row.get("entry_date") or "").strip(),
        amount=(row.get("amount") or "").strip() or None,
        year=_int_or_none(row.get("year")),
        month=_int_or_none(row.get("month")),
        week_of_month=_int_or_none(row.get("week_of_month")),
        weekday=(row.get("weekday") or "").strip().lower() or None,
        distribution=DistributionInput(**shares) if shares else None,
        notes=(row.get("notes") or "").strip() or None,
        status=(row.get("status") or "").strip().lower() or None,
    )


def read_rows(csv_path: Path) -> list[PayrollEntryInput]:
    entries: list[PayrollEntryInput] = []
    with open(csv_path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for line, row in enumerate(reader, start=2):
            try:
                entries.append(_row_to_input(row))
            except ValueError as exc:
                print(f"Línea {line} ignorada: {exc}")
    return entries


async def import_payroll(csv_path: Path, user_id: UUID, stop_on_error: bool = False) -> int:
    if not csv_path.exists():
        print(f"ERROR: No se encontró el archivo CSV: {csv_path}")
        return 1

    entries = read_rows(csv_path)
    print(f"Leídas {len(entries)} filas del CSV")
    if not entries:
        return 0

    async with async_session_factory() as session:
        result = await bulk_upsert(
            session,
            PayrollBulkRequest(entries=entries, stop_on_error=stop_on_error),
            user_id,
        )

    print(f"Creados: {result.created}")
    print(f"Actualizados: {result.updated}")
    print(f"Con error: {result.failed}")
    for error in result.errors:
        print(f"  fila {error.index} ({error.entry_date}): {error.detail}")

    print("Importación completada")
    return 1 if result.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Importar planilla de pagos desde CSV")
    parser.add_argument("--csv", type=Path, required=True, help="Ruta al CSV")
    parser.add_argument("--user", type=UUID, required=True, help="UUID del usuario que importa")
    parser.add_argument(
        "--stop-on-error", action="store_true", help="Cortar en la primera fila inválida"
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(import_payroll(args.csv, args.user, args.stop_on_error)))


if __name__ == "__main__":
    main()
