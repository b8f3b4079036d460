import csv
from datetime import date, datetime
from io import TextIOWrapper

from openpyxl import load_workbook


def _normalize_cell(value):
    if value is None:
        return ''
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return str(value).strip()
    if isinstance(value, int):
        return str(value)
    return str(value).strip()


def iter_upload_rows(file):
    """
    Baca file upload (.xlsx atau .csv) menjadi list (nomor_baris, dict_kolom).
    Nomor baris dimulai dari 2 karena baris 1 adalah header.
    """
    filename = (file.filename or "").lower()
    if filename.endswith('.xlsx'):
        workbook = load_workbook(file, data_only=True)
        sheet = workbook.active
        rows = list(sheet.iter_rows(values_only=True))
        if not rows:
            return []
        headers = [str(cell).strip() if cell is not None else '' for cell in rows[0]]
        parsed = []
        for idx, row in enumerate(rows[1:], start=2):
            row_data = {}
            for col_idx, header in enumerate(headers):
                value = row[col_idx] if col_idx < len(row) else None
                row_data[header] = _normalize_cell(value)
            parsed.append((idx, row_data))
        return parsed

    wrapper = TextIOWrapper(file.stream, encoding='utf-8-sig')
    reader = csv.DictReader(wrapper)
    return [(idx, {k: (v.strip() if isinstance(v, str) else '' if v is None else str(v).strip())
                   for k, v in row.items()})
            for idx, row in enumerate(reader, start=2)]


def extract_field(row, *names):
    """Ambil nilai kolom pertama yang cocok (tidak peka huruf besar/kecil)."""
    lowered = {(k or '').strip().lower(): v for k, v in row.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return value
    return None


def normalize_gender(value):
    if not value:
        return None
    normalized = value.strip().lower()
    if 'laki' in normalized or normalized in ('l', 'male', 'pria'):
        return 'L'
    if 'perempuan' in normalized or normalized in ('p', 'female', 'wanita'):
        return 'P'
    return None
