import io
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from config import Config
from models import RECORD_FIELDS

XLSX_MIME_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
SHEET_NAME = 'Invoice Data'

COLUMN_HEADERS = {
    'invoice_number': 'Invoice Number',
    'invoice_date': 'Invoice Date',
    'vendor_name': 'Vendor',
    'customer_name': 'Customer',
    'description': 'Description',
    'quantity': 'Quantity',
    'unit': 'Unit',
    'unit_price': 'Unit Price',
    'tax_rate': 'Tax Rate',
    'total_price': 'Total',
    'currency': 'Currency',
}

def records_to_dataframe(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """One row per record, one column per field, in record and field order.

    Values are written as held; edited cells that did not coerce to numbers
    stay text. An empty record list gives a headers-only frame.
    """
    rows = [[record.get(field) for field in RECORD_FIELDS] for record in records]
    df = pd.DataFrame(rows, columns=RECORD_FIELDS, dtype=object)
    return df.rename(columns=COLUMN_HEADERS)

def export_records(records: List[Dict[str, Any]]) -> bytes:
    """Serialize the current records into an .xlsx workbook."""
    df = records_to_dataframe(records)
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
        sheet = writer.sheets[SHEET_NAME]
        for column_cells in sheet.columns:
            width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column_cells)
            sheet.column_dimensions[column_cells[0].column_letter].width = min(width + 2, 60)
    return output.getvalue()

def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{Config.EXPORT_FILENAME_PREFIX}-{today.isoformat()}.xlsx"
