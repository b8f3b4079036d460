from datetime import date, datetime

from sekolah.exceptions import ValidationError

DATE_FORMATS = ('%Y-%m-%d', '%d/%m/%Y', '%d-%m-%Y')


def parse_date(value, field='date'):
    """Terima date, datetime, atau string YYYY-MM-DD / DD/MM/YYYY. Kosong -> None."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(str(value).strip(), fmt).date()
        except ValueError:
            continue
    raise ValidationError(f'Format tanggal tidak valid: {value!r}', field=field)


def coerce_enum(enum_cls, value, field):
    """Ubah nama enum ('L', 'COMPLETE', ...) menjadi anggota enum. Kosong -> None."""
    if value in (None, ''):
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls[str(value).strip().upper()]
    except KeyError:
        raise ValidationError(f'Nilai {field} tidak dikenal: {value!r}', field=field) from None
