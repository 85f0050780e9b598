import json
import io
from logging import getLogger

import yaml

from marcutil.marc import Record, ControlField, DataField
from marcutil.constants import *
from marcutil.errors import EmptyRecord, InvalidEncoding, InvalidLength, ValueTooLarge

logger = getLogger(__name__)

_XML_ESCAPES = {
    '&': '&amp;',
    "'": '&apos;',
    '"': '&quot;',
    '>': '&gt;',
    '<': '&lt;',
}


def escape_xml(value: str) -> str:
    """Escape markup characters and turn everything past '~' into a
    hexadecimal character reference, so the output stays 7-bit clean."""
    buf = []
    for c in value:
        if c in _XML_ESCAPES:
            buf.append(_XML_ESCAPES[c])
        elif c > '~':
            buf.append(f"&#x{ord(c):X};")
        else:
            buf.append(c)
    return ''.join(buf)


def _selected_fields(record: Record, ignored_tags: list[str] | None, sort_tags: bool):
    ignored = [] if ignored_tags is None else ignored_tags
    control_fields = [f for f in record.get_control_fields(sort=sort_tags) if f.tag not in ignored]
    data_fields = [f for f in record.get_data_fields(sort=sort_tags) if f.tag not in ignored]
    return control_fields, data_fields


def _fixed(value: int, width: int, name: str) -> bytes:
    if value >= 10 ** width:
        raise ValueTooLarge(name, value, width)
    return f"{value:0{width}d}".encode('ascii')


def _encode(value: str, encoding: str, what: str) -> bytes:
    try:
        return value.encode(encoding)
    except UnicodeEncodeError as e:
        raise InvalidEncoding(f"Cannot encode {what} as {encoding}: {value!r}") from e


def _field_text(field: ControlField | DataField) -> str:
    if isinstance(field, ControlField):
        return field.content or ''

    res = f"{field.ind1}{field.ind2}"
    for subfield in field.subfields:
        res += f"{US.decode('ascii')}{subfield.code}{subfield.content or ''}"
    return res


def record_to_binary(record: Record, encoding: str = 'utf-8', ignored_tags: list[str] | None = None, sort_tags=False) -> bytes:
    """Encode a record as ISO 2709.

    Directory lengths include the field terminator. The record length and
    base address positions of the leader are always recomputed; a record
    without a leader gets a blank one.
    """
    dir_buf = io.BytesIO()
    data_buf = io.BytesIO()

    previous = 0

    control_fields, data_fields = _selected_fields(record, ignored_tags, sort_tags)

    # an ISO 2709 directory holds at least one entry
    if not control_fields and not data_fields:
        raise EmptyRecord("Record has no fields to encode")

    for field in control_fields + data_fields:
        tag_bytes = _encode(field.tag, encoding, 'tag')
        if len(tag_bytes) != TAG_SIZE:
            raise InvalidLength(f"Tag {field.tag!r} is not {TAG_SIZE} bytes in {encoding}")

        data_buf.write(_encode(_field_text(field), encoding, f"field {field.tag}"))
        data_buf.write(FT)

        dir_buf.write(tag_bytes)
        dir_buf.write(_fixed(data_buf.tell() - previous, FIELD_LENGTH_WIDTH, f"Length of field {field.tag}"))
        dir_buf.write(_fixed(previous, FIELD_START_WIDTH, f"Start of field {field.tag}"))
        previous = data_buf.tell()

    dir_buf.write(FT)

    base_address = LEADER_SIZE + dir_buf.tell()
    record_len = base_address + data_buf.tell() + 1

    if record.leader is None:
        leader = bytearray(b' ' * LEADER_SIZE)
    else:
        leader = bytearray(_encode(record.leader.content, encoding, 'leader'))
        if len(leader) != LEADER_SIZE:
            raise InvalidLength(f"Leader {record.leader.content!r} is not {LEADER_SIZE} bytes in {encoding}")

    leader[0:RECORD_LENGTH_SIZE] = _fixed(record_len, RECORD_LENGTH_SIZE, 'Record length')
    leader[BASE_ADDRESS_OFFSET:BASE_ADDRESS_OFFSET + 5] = _fixed(base_address, 5, 'Base address of data')

    logger.debug(f"Encoded record with {len(control_fields) + len(data_fields)} fields in {record_len} bytes")

    return bytes(leader) + dir_buf.getvalue() + data_buf.getvalue() + RT


def record_to_breaker(record: Record) -> str:
    return record.to_breaker()


def _indent(formatted: bool, depth: int) -> str:
    return '\n' + ' ' * depth if formatted else ''


def _record_xml_body(record: Record, formatted: bool, depth: int, ignored_tags: list[str] | None = None, sort_tags=False) -> str:
    xml = _indent(formatted, depth + 2) + '<leader>'
    if record.leader is not None:
        xml += escape_xml(record.leader.content)
    xml += '</leader>'

    control_fields, data_fields = _selected_fields(record, ignored_tags, sort_tags)

    for field in control_fields:
        xml += _indent(formatted, depth + 2) + f'<controlfield tag="{escape_xml(field.tag)}">'
        if field.content is not None:
            xml += escape_xml(field.content)
        xml += '</controlfield>'

    for field in data_fields:
        xml += _indent(formatted, depth + 2)
        xml += f'<datafield tag="{escape_xml(field.tag)}" ind1="{escape_xml(str(field.ind1))}" ind2="{escape_xml(str(field.ind2))}">'

        for subfield in field.subfields:
            xml += _indent(formatted, depth + 4) + f'<subfield code="{escape_xml(subfield.code)}">'
            if subfield.content is not None:
                xml += escape_xml(subfield.content)
            xml += '</subfield>'

        xml += _indent(formatted, depth + 2) + '</datafield>'

    return xml


def _root_open(name: str, formatted: bool) -> str:
    if formatted:
        return (f'\n<{name}\n  xmlns="{MARCXML_NAMESPACE}"\n  xmlns:xsi="{MARCXML_XSI_NAMESPACE}"'
                f'\n  xsi:schemaLocation="{MARCXML_SCHEMA_LOCATION}">')
    return f'<{name} xmlns="{MARCXML_NAMESPACE}" xmlns:xsi="{MARCXML_XSI_NAMESPACE}" xsi:schemaLocation="{MARCXML_SCHEMA_LOCATION}">'


def record_to_xml(record: Record, formatted=False) -> str:
    xml = '<?xml version="1.0"?>'
    xml += _root_open('record', formatted)
    xml += _record_xml_body(record, formatted, 0)
    xml += _indent(formatted, 0) + '</record>'
    return xml


class MarcJsonWriter:
    def __init__(self, f, layout_format: int = 1, ignored_tags: list[str] | None = None, indent: int | None = None, sort_tags = False):
        self.f = f
        self.format = layout_format
        self.ignored_tags = [] if ignored_tags is None else ignored_tags
        self.indent = indent
        self.sort_tags = sort_tags

    def _leader(self, record: Record) -> str | None:
        return None if record.leader is None else record.leader.content

    def _write_format1(self, record: Record):
        obj = {
            'leader': self._leader(record),
            'fields': []
        }

        control_fields, data_fields = _selected_fields(record, self.ignored_tags, self.sort_tags)

        for field in control_fields:
            obj['fields'].append({
                str(field.tag): field.content
            })

        for field in data_fields:
            field_obj = {'ind1': str(field.ind1), 'ind2': str(field.ind2), 'subfields': []}

            for subfield in field.subfields:
                field_obj['subfields'].append({
                    subfield.code: subfield.content
                })

            obj['fields'].append({
                str(field.tag): field_obj
            })

        return obj

    def _write_format2(self, record: Record):
        obj = {
            'leader': self._leader(record),
            'fields': {}
        }

        control_fields, data_fields = _selected_fields(record, self.ignored_tags, self.sort_tags)

        for field in control_fields:
            obj['fields'].setdefault(str(field.tag), []).append(field.content)

        for field in data_fields:
            field_obj = {'ind1': str(field.ind1), 'ind2': str(field.ind2), 'subfields': {}}

            for subfield in field.subfields:
                field_obj['subfields'].setdefault(subfield.code, []).append(subfield.content)

            obj['fields'].setdefault(str(field.tag), []).append(field_obj)

        return obj

    def to_obj(self, record: Record):
        if self.format == 1:
            return self._write_format1(record)
        return self._write_format2(record)

    def write(self, record: Record):
        json.dump(self.to_obj(record), self.f, indent=self.indent)

    def write_all(self, records):
        json.dump([self.to_obj(record) for record in records], self.f, indent=self.indent)


class MarcYamlWriter(MarcJsonWriter):
    def write(self, record: Record):
        yaml.dump(self.to_obj(record), self.f, indent=self.indent, sort_keys=False)

    def write_all(self, records):
        yaml.dump([self.to_obj(record) for record in records], self.f, indent=self.indent, sort_keys=False)


class MarcXmlWriter:
    """Collects records into a MARCXML collection written on flush()."""

    def __init__(self, f, formatted=False, ignored_tags: list[str] | None = None, xml_declaration=True, sort_tags = False) -> None:
        self.f = f
        self.formatted = formatted
        self.xml_declaration = xml_declaration
        self.ignored_tags = [] if ignored_tags is None else ignored_tags
        self.sort_tags = sort_tags
        self.records: list[str] = []

    def write(self, record: Record):
        xml = _indent(self.formatted, 2) + '<record>'
        xml += _record_xml_body(record, self.formatted, 2, self.ignored_tags, self.sort_tags)
        xml += _indent(self.formatted, 2) + '</record>'
        self.records.append(xml)

    def write_all(self, records):
        for record in records:
            self.write(record)

    def flush(self):
        xml = '<?xml version="1.0"?>' if self.xml_declaration else ''
        xml += _root_open('collection', False)
        xml += ''.join(self.records)
        xml += _indent(self.formatted, 0) + '</collection>'
        self.f.write(xml)
        logger.debug(f"Wrote MARCXML collection of {len(self.records)} records")
        self.records = []


class MarcBreakerWriter:
    def __init__(self, f) -> None:
        self.f = f
        self.count = 0

    def write(self, record: Record):
        if self.count > 0:
            self.f.write('\n')
        self.f.write(record.to_breaker() + '\n')
        self.count += 1

    def write_all(self, records):
        for record in records:
            self.write(record)


class MarcStreamWriter:
    def __init__(self, f: io.RawIOBase, encoding: str = 'utf-8', ignored_tags: list[str] | None = None, sort_tags = False) -> None:
        self.f = f
        self.encoding = encoding
        self.ignored_tags = [] if ignored_tags is None else ignored_tags
        self.sort_tags = sort_tags

    def write(self, record: Record):
        self.f.write(record_to_binary(record, self.encoding, self.ignored_tags, self.sort_tags))

    def write_all(self, records):
        for record in records:
            self.write(record)


def _write_to(writer, records: list[Record] | Record):
    if isinstance(records, Record):
        writer.write(records)
    else:
        writer.write_all(records)


def write_marc_json_to_path(path: str, records: list[Record] | Record, encoding = "utf-8", writer_getter = None):
    with open(path, "w", encoding=encoding) as f:
        _write_to(writer_getter(f) if writer_getter is not None else MarcJsonWriter(f), records)


def write_marc_yaml_to_path(path: str, records: list[Record] | Record, encoding = "utf-8", writer_getter = None):
    with open(path, "w", encoding=encoding) as f:
        _write_to(writer_getter(f) if writer_getter is not None else MarcYamlWriter(f), records)


def write_marc_breaker_to_path(path: str, records: list[Record] | Record, encoding = "utf-8", writer_getter = None):
    with open(path, "w", encoding=encoding) as f:
        _write_to(writer_getter(f) if writer_getter is not None else MarcBreakerWriter(f), records)


def write_marc_xml_to_path(path: str, records: list[Record] | Record, encoding = "utf-8", writer_getter = None):
    with open(path, "w", encoding=encoding) as f:
        writer = writer_getter(f) if writer_getter is not None else MarcXmlWriter(f)
        _write_to(writer, records)
        writer.flush()


def write_marc_stream_to_path(path: str, records: list[Record] | Record, writer_getter = None):
    with open(path, "wb") as f:
        _write_to(writer_getter(f) if writer_getter is not None else MarcStreamWriter(f), records)
