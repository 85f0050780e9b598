import json
import re
import xml.etree.ElementTree as ET
from collections import deque
from logging import getLogger

import yaml

from marcutil.marc import Record, ControlField, DataField, SubField, Leader, is_control_tag, unescape_from_breaker
from marcutil.constants import *
from marcutil.errors import *

logger = getLogger(__name__)

_SUBFIELD_DELIMITER = US.decode('ascii')
_BREAKER_SUBFIELD_SPLIT = re.compile(re.escape(BREAKER_SF_DELIMITER) + r'(?!' + re.escape(BREAKER_SF_DELIMITER_ESCAPE[1:]) + ')')


def _parse_number(raw: bytes) -> int | None:
    return int(raw.decode('ascii')) if raw.isdigit() else None


def _decode(raw: bytes, encoding: str, what: str) -> str:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as e:
        raise InvalidEncoding(f"Cannot decode {what} as {encoding}: {raw!r}") from e


def _parse_data_field(tag: str, text: str) -> DataField:
    field = DataField(tag, text[0:1], text[1:2])

    # anything before the first delimiter is not a subfield
    for segment in text[2:].split(_SUBFIELD_DELIMITER)[1:]:
        if not segment:
            continue
        field.subfields.append(SubField(segment[0], segment[1:] or None))

    return field


def parse_binary_record(data: bytes, encoding: str = 'utf-8') -> Record:
    """Decode a single ISO 2709 record, record terminator included.

    Directory lengths count the trailing field terminator, which is
    dropped from the decoded content.
    """
    data = bytes(data)
    full_len = len(data)

    if full_len < RECORD_LENGTH_SIZE:
        raise InvalidSize(f"Binary record is too short: {full_len} bytes")

    size = _parse_number(data[:RECORD_LENGTH_SIZE])
    if size is None:
        raise InvalidSize(f"Invalid record size: {data[:RECORD_LENGTH_SIZE]!r}")

    if size != full_len:
        raise SizeMismatch(size, full_len)

    if full_len < LEADER_SIZE:
        raise InvalidSize(f"Binary record of {full_len} bytes cannot hold a {LEADER_SIZE} byte leader")

    leader_bytes = data[:LEADER_SIZE]
    record = Record(Leader(_decode(leader_bytes, encoding, 'leader')))

    base_address = _parse_number(leader_bytes[BASE_ADDRESS_OFFSET:BASE_ADDRESS_OFFSET + 5])
    if base_address is None:
        raise InvalidDirectory(f"Invalid base address of data: {leader_bytes[BASE_ADDRESS_OFFSET:BASE_ADDRESS_OFFSET + 5]!r}")

    directory_end = base_address - 1
    directory_len = directory_end - LEADER_SIZE
    if directory_len <= 0 or directory_len % DIRECTORY_ENTRY_SIZE != 0:
        raise InvalidDirectory(f"Directory length {directory_len} is not a positive multiple of {DIRECTORY_ENTRY_SIZE}")

    if base_address > full_len:
        raise InvalidDirectory(f"Base address of data {base_address} lies past the end of a {full_len} byte record")

    if data[directory_end:base_address] != FT:
        raise InvalidDirectory(f"Expected field terminator at end of directory, found {data[directory_end:base_address]!r}")

    for pos in range(LEADER_SIZE, directory_end, DIRECTORY_ENTRY_SIZE):
        entry = data[pos:pos + DIRECTORY_ENTRY_SIZE]
        tag = _decode(entry[:TAG_SIZE], encoding, 'directory tag')
        length = _parse_number(entry[TAG_SIZE:TAG_SIZE + FIELD_LENGTH_WIDTH])
        start = _parse_number(entry[TAG_SIZE + FIELD_LENGTH_WIDTH:])

        if length is None or start is None:
            raise InvalidDirectoryEntry(f"Invalid directory entry at byte {pos}: {entry!r}")

        if length == 0:
            raise InvalidDirectoryEntry(f"Directory entry for {tag} at byte {pos} has zero length")

        start += base_address
        end = start + length - 1

        # the field terminator sits at end and must precede the record terminator
        if end >= full_len - 1:
            raise FieldOutOfBounds(tag, start, end, full_len)

        text = _decode(data[start:end], encoding, f"field {tag}")

        if is_control_tag(tag):
            record.control_fields.append(ControlField(tag, text or None))
        else:
            record.data_fields.append(_parse_data_field(tag, text))

    return record


class MarcStreamReader:
    """Reads ISO 2709 records one at a time from a binary file object."""

    def __init__(self, f, encoding: str = 'utf-8', chunk_size: int = 65536) -> None:
        self.__f = f
        self.__buf = bytearray()
        self.__eof = False
        self.encoding = encoding
        self.chunk_size = chunk_size
        self.records_read = 0

    def __fill(self) -> None:
        while not self.__eof and RT not in self.__buf:
            chunk = self.__f.read(self.chunk_size)
            if not chunk:
                self.__eof = True
            else:
                self.__buf.extend(chunk)

    def has_next(self) -> bool:
        self.__fill()
        return len(self.__buf.strip()) > 0

    def read_next(self) -> Record | None:
        if not self.has_next():
            return None

        idx = self.__buf.find(RT)
        if idx < 0:
            raw = bytes(self.__buf)
            self.__buf.clear()
        else:
            raw = bytes(self.__buf[:idx + 1])
            del self.__buf[:idx + 1]

        record = parse_binary_record(raw.lstrip(b'\r\n'), self.encoding)
        self.records_read += 1
        logger.debug(f"Read binary record {self.records_read} ({len(raw)} bytes)")
        return record

    def __iter__(self):
        while True:
            try:
                record = self.read_next()
            except (MarcError, OSError) as e:
                logger.error(f"Stopped reading MARC records after {self.records_read}: {e}")
                return

            if record is None:
                return

            yield record


def _add_breaker_line(record: Record, line: str) -> None:
    if len(line) < 3:
        return

    tag = line[:3]

    if tag == BREAKER_LEADER_TAG:
        if len(line) > 4:
            record.set_leader(unescape_from_breaker(line[4:]))
        return

    if is_control_tag(tag):
        field = ControlField(tag)
        if len(line) > 4:
            field.set_content(unescape_from_breaker(line[4:]))
        record.control_fields.append(field)
        return

    field = DataField(tag, _breaker_indicator(line[4:5]), _breaker_indicator(line[5:6]))

    for token in _BREAKER_SUBFIELD_SPLIT.split(line[6:])[1:]:
        if not token:
            continue
        field.subfields.append(SubField(token[0], unescape_from_breaker(token[1:]) or None))

    record.data_fields.append(field)


def _breaker_indicator(value: str) -> str:
    return '' if value == BREAKER_NO_INDICATOR else value


def parse_breaker_record(text: str) -> Record:
    record = Record()

    # only \n ends a line; other line break characters are content
    for line in text.split('\n'):
        _add_breaker_line(record, line.removesuffix('\r'))

    return record


def _local_name(name: str) -> str:
    return name.rsplit('}', 1)[-1]


def _attribute(elem: ET.Element, name: str) -> str | None:
    value = elem.get(name)
    if value is not None:
        return value

    for key, value in elem.attrib.items():
        if _local_name(key) == name:
            return value

    return None


class _MarcXmlHandler:
    """Builds records from pull parser events.

    Subfields attach to the data field at data_field_index, not to
    whatever field happens to be last.
    """

    def __init__(self) -> None:
        self.root: ET.Element | None = None
        self.record: Record | None = None
        self.control_field_index: int | None = None
        self.data_field_index: int | None = None
        self.subfield_index: int | None = None

    def handle_events(self, parser: ET.XMLPullParser):
        for event, elem in parser.read_events():
            if event == 'start':
                self.start(elem)
            else:
                record = self.end(elem)
                if record is not None:
                    yield record

    def start(self, elem: ET.Element) -> None:
        if self.root is None:
            self.root = elem

        name = _local_name(elem.tag)

        if name == 'record':
            self.record = Record()
            self.control_field_index = None
            self.data_field_index = None
            self.subfield_index = None
            return

        if self.record is None:
            return

        match name:
            case 'controlfield':
                tag = _attribute(elem, 'tag')
                if tag is None:
                    raise MissingTag("Controlfield has no tag")
                self.record.control_fields.append(ControlField(tag))
                self.control_field_index = len(self.record.control_fields) - 1
            case 'datafield':
                tag = _attribute(elem, 'tag')
                if tag is None:
                    raise MissingTag("Datafield has no tag")
                self.record.data_fields.append(DataField(tag, _attribute(elem, 'ind1'), _attribute(elem, 'ind2')))
                self.data_field_index = len(self.record.data_fields) - 1
            case 'subfield':
                if self.data_field_index is None:
                    logger.debug("Ignoring subfield outside of a datafield")
                    return
                code = _attribute(elem, 'code')
                if code is None:
                    raise MissingTag("Subfield has no code")
                field = self.record.data_fields[self.data_field_index]
                field.subfields.append(SubField(code))
                self.subfield_index = len(field.subfields) - 1

    def end(self, elem: ET.Element) -> Record | None:
        name = _local_name(elem.tag)

        if name == 'record':
            record = self.record
            self.record = None
            elem.clear()
            if self.root is not None and self.root is not elem:
                self.root.clear()
            return record

        if self.record is None:
            return None

        match name:
            case 'leader':
                if elem.text:
                    self.record.set_leader(elem.text)
            case 'controlfield':
                if self.control_field_index is not None and elem.text:
                    self.record.control_fields[self.control_field_index].set_content(elem.text)
                self.control_field_index = None
            case 'subfield':
                if self.data_field_index is not None and self.subfield_index is not None and elem.text:
                    field = self.record.data_fields[self.data_field_index]
                    field.subfields[self.subfield_index].set_content(elem.text)
                self.subfield_index = None
            case 'datafield':
                self.data_field_index = None

        return None


def parse_xml_record(xml: str | bytes) -> Record:
    """Decode the first record element of a MARCXML document."""
    parser = ET.XMLPullParser(events=('start', 'end'))
    handler = _MarcXmlHandler()
    records = []

    try:
        parser.feed(xml.lstrip())
        records.extend(handler.handle_events(parser))
        parser.close()
        records.extend(handler.handle_events(parser))
    except ET.ParseError as e:
        raise XmlParseError(f"Error parsing MARCXML: {e}") from e

    if not records:
        raise XmlParseError("MARCXML document contains no record element")

    if len(records) > 1:
        logger.debug(f"MARCXML document holds {len(records)} records, using the first")

    return records[0]


class MarcXmlReader:
    """Reads MARCXML records one at a time, one per record element."""

    def __init__(self, f, chunk_size: int = 65536) -> None:
        self.__f = f
        self.__parser = ET.XMLPullParser(events=('start', 'end'))
        self.__handler = _MarcXmlHandler()
        self.__pending: deque[Record] = deque()
        self.__error: MarcError | None = None
        self.__started = False
        self.__closed = False
        self.chunk_size = chunk_size
        self.records_read = 0

    def __feed(self, chunk) -> None:
        if not self.__started:
            chunk = chunk.lstrip()
            if not chunk:
                return
            self.__started = True
        self.__parser.feed(chunk)

    def __fill(self) -> None:
        while not self.__pending and not self.__closed:
            chunk = self.__f.read(self.chunk_size)
            try:
                if chunk:
                    self.__feed(chunk)
                else:
                    self.__closed = True
                    self.__parser.close()

                for record in self.__handler.handle_events(self.__parser):
                    self.__pending.append(record)
            except ET.ParseError as e:
                error = XmlParseError(f"Error parsing MARCXML: {e}")
                error.__cause__ = e
                self.__fail(error)
            except MarcError as e:
                self.__fail(e)

    def __fail(self, error: MarcError) -> None:
        # records completed before the error are still handed out first
        self.__closed = True
        self.__error = error

    def has_next(self) -> bool:
        self.__fill()
        if self.__pending:
            return True

        if self.__error is not None:
            error, self.__error = self.__error, None
            raise error

        return False

    def read_next(self) -> Record | None:
        if not self.has_next():
            return None

        self.records_read += 1
        logger.debug(f"Read MARCXML record {self.records_read}")
        return self.__pending.popleft()

    def __iter__(self):
        while True:
            try:
                record = self.read_next()
            except (MarcError, OSError) as e:
                logger.error(f"Stopped reading MARCXML records after {self.records_read}: {e}")
                return

            if record is None:
                return

            yield record


def record_from_dict(record_obj: dict) -> Record:
    try:
        return _record_from_obj(record_obj)
    except (KeyError, IndexError, AttributeError, TypeError) as e:
        raise InvalidRecordObject(f"Malformed record object: {e!r}") from e


def _record_from_obj(record_obj: dict) -> Record:
    leader = record_obj.get('leader')
    record = Record(leader) if leader else Record()

    if isinstance(record_obj['fields'], list):
        for field_obj in record_obj['fields']:
            tag = list(field_obj.keys())[0]
            record.add_field(_field_from_obj(tag, field_obj[tag]))
    else:
        for tag in record_obj['fields']:
            for field_obj in record_obj['fields'][tag]:
                record.add_field(_field_from_obj(tag, field_obj))

    return record


def _field_from_obj(tag: str, field_obj) -> ControlField | DataField:
    if is_control_tag(tag):
        return ControlField(tag, field_obj)

    field = DataField(tag, field_obj.get('ind1'), field_obj.get('ind2'))

    subfields = field_obj.get('subfields', [])
    if isinstance(subfields, list):
        for subfield_obj in subfields:
            code = list(subfield_obj.keys())[0]
            field.subfields.append(SubField(code, subfield_obj[code]))
    else:
        for code in subfields:
            for content in subfields[code]:
                field.subfields.append(SubField(code, content))

    return field


class MarcJsonReader:
    def __init__(self, f) -> None:
        self.json = self._load(f)
        if not isinstance(self.json, list):
            self.json = [self.json]

    def _load(self, f):
        return json.load(f)

    def __iter__(self):
        for record_obj in self.json:
            yield record_from_dict(record_obj)


class MarcYamlReader(MarcJsonReader):
    def _load(self, f):
        return yaml.safe_load(f)
