from marcutil.constants import *
from marcutil.errors import InvalidLength


def escape_to_breaker(value: str) -> str:
    return value.replace(BREAKER_SF_DELIMITER, BREAKER_SF_DELIMITER_ESCAPE)


def unescape_from_breaker(value: str) -> str:
    return value.replace(BREAKER_SF_DELIMITER_ESCAPE, BREAKER_SF_DELIMITER)


def byte_length(value: str) -> int:
    return len(value.encode('utf-8'))


def is_control_tag(tag: str) -> bool:
    """Control fields are told apart lexically, tags may hold letters."""
    return tag < FIRST_DATA_TAG


class Tag(str):
    def __new__(cls, value: str):
        if byte_length(value) != TAG_SIZE:
            raise InvalidLength(f"Invalid tag: '{value}'")
        return super().__new__(cls, value)


class Indicator:
    def __init__(self, value: str | None = None) -> None:
        value = '' if value is None else value
        if byte_length(value) > INDICATOR_SIZE:
            raise InvalidLength(f"Invalid indicator value: '{value}'")
        self.value: str | None = None if value in ('', ' ') else value

    def __eq__(self, other) -> bool:
        if isinstance(other, Indicator):
            return self.value == other.value
        return False

    def __repr__(self) -> str:
        return f"Indicator({self.value!r})"

    def to_breaker(self) -> str:
        return BREAKER_NO_INDICATOR if self.value is None else self.value

    def __str__(self) -> str:
        return ' ' if self.value is None else self.value


class VariableField:
    def __init__(self, tag: str) -> None:
        self.tag = Tag(tag)


class ControlField(VariableField):
    def __init__(self, tag: str, content: str | None = None) -> None:
        super().__init__(tag)
        self.content = content

    def set_content(self, content: str) -> None:
        self.content = content

    def __eq__(self, other) -> bool:
        if isinstance(other, ControlField):
            return self.tag == other.tag and self.content == other.content
        return False

    def __repr__(self) -> str:
        return f"ControlField({self.tag!r}, {self.content!r})"

    def to_breaker(self) -> str:
        if self.content is None:
            return f"{self.tag}"
        return f"{self.tag} {escape_to_breaker(self.content)}"

    def __str__(self) -> str:
        return self.to_breaker()


class SubField:
    def __init__(self, code: str, content: str | None = None) -> None:
        if byte_length(code) != SUBFIELD_CODE_SIZE:
            raise InvalidLength(f"Invalid subfield code: '{code}'")
        self.code = code
        self.content = content

    def set_content(self, content: str) -> None:
        self.content = content

    def __eq__(self, other) -> bool:
        if isinstance(other, SubField):
            return self.code == other.code and self.content == other.content
        return False

    def __repr__(self) -> str:
        return f"SubField({self.code!r}, {self.content!r})"

    def to_breaker(self) -> str:
        if self.content is None:
            return f"${self.code}"
        return f"${self.code}{escape_to_breaker(self.content)}"

    def __str__(self) -> str:
        return self.to_breaker()


class DataField(VariableField):
    def __init__(self, tag: str, ind1: str | None = None, ind2: str | None = None, subfields: list[SubField] | None = None) -> None:
        super().__init__(tag)
        self.ind1 = Indicator(ind1)
        self.ind2 = Indicator(ind2)
        self.subfields: list[SubField] = [] if subfields is None else list(subfields)

    def set_ind1(self, ind: str | None) -> None:
        self.ind1 = Indicator(ind)

    def set_ind2(self, ind: str | None) -> None:
        self.ind2 = Indicator(ind)

    def add_subfield(self, code: str, content: str | None = None) -> SubField:
        subfield = SubField(code, content)
        self.subfields.append(subfield)
        return subfield

    def get_subfields(self, code: str) -> list[SubField]:
        return [subfield for subfield in self.subfields if subfield.code == code]

    def __getitem__(self, key) -> list[SubField] | None:
        res = self.get_subfields(key)
        return res if len(res) > 0 else None

    def __contains__(self, key) -> bool:
        for subfield in self.subfields:
            if subfield.code == key:
                return True

        return False

    def __eq__(self, other) -> bool:
        if isinstance(other, DataField):
            return (self.tag == other.tag and self.ind1 == other.ind1
                    and self.ind2 == other.ind2 and self.subfields == other.subfields)
        return False

    def __repr__(self) -> str:
        return f"DataField({self.tag!r}, {self.ind1.value!r}, {self.ind2.value!r}, {self.subfields!r})"

    def to_breaker(self) -> str:
        res = f"{self.tag} {self.ind1.to_breaker()}{self.ind2.to_breaker()}"
        for subfield in self.subfields:
            res += subfield.to_breaker()
        return res

    def __str__(self) -> str:
        return self.to_breaker()


class Leader:
    """Fixed 24 byte record header.

    The content is kept verbatim; the properties below only read the
    well-known positions and never rewrite them.
    """

    def __init__(self, content: str) -> None:
        if byte_length(content) != LEADER_SIZE:
            raise InvalidLength(f"Invalid leader: '{content}'")
        self.content = content

    def __getitem__(self, key):
        try:
            idx = int(key)
        except (TypeError, ValueError):
            return None
        return self.content[idx] if 0 <= idx < len(self.content) else None

    def __numeric(self, start: int, end: int) -> int | None:
        value = self.content[start:end]
        return int(value) if value.isascii() and value.isdigit() else None

    @property
    def record_length(self) -> int | None:
        return self.__numeric(0, RECORD_LENGTH_SIZE)

    @property
    def record_status(self) -> str:
        return self.content[5:6]

    @property
    def type_of_record(self) -> str:
        return self.content[6:7]

    @property
    def char_coding_scheme(self) -> str:
        return self.content[9:10]

    @property
    def base_address_of_data(self) -> int | None:
        return self.__numeric(BASE_ADDRESS_OFFSET, BASE_ADDRESS_OFFSET + 5)

    @property
    def entry_map(self) -> str:
        return self.content[20:24]

    def marshal(self) -> str:
        return self.content

    def __eq__(self, other) -> bool:
        if isinstance(other, Leader):
            return self.content == other.content
        return False

    def __repr__(self) -> str:
        return f"Leader({self.content!r})"

    def to_breaker(self) -> str:
        return f"{BREAKER_LEADER_TAG} {escape_to_breaker(self.content)}"

    def __str__(self) -> str:
        return self.to_breaker()


class Record:
    def __init__(self, leader: Leader | str | None = None) -> None:
        self.leader: Leader | None = None
        if leader is not None:
            self.leader = leader if isinstance(leader, Leader) else Leader(leader)
        self.control_fields: list[ControlField] = []
        self.data_fields: list[DataField] = []

    def set_leader(self, leader: str) -> None:
        self.leader = Leader(leader)

    def add_field(self, field: ControlField | DataField) -> None:
        if isinstance(field, ControlField):
            self.control_fields.append(field)
        else:
            self.data_fields.append(field)

    def get_control_fields(self, tag: str | None = None, sort: bool = False) -> list[ControlField]:
        res = [field for field in self.control_fields if tag is None or field.tag == tag]
        return sorted(res, key=lambda cf: cf.tag) if sort else res

    def get_data_fields(self, tag: str | None = None, sort: bool = False) -> list[DataField]:
        res = [field for field in self.data_fields if tag is None or field.tag == tag]
        return sorted(res, key=lambda df: df.tag) if sort else res

    def get_fields(self, tag: str) -> list[DataField]:
        return self.get_data_fields(tag)

    def get_values(self, tag: str, code: str) -> list[str]:
        res = []
        for field in self.get_fields(tag):
            for subfield in field.get_subfields(code):
                if subfield.content is not None:
                    res.append(subfield.content)
        return res

    def __getitem__(self, key) -> list[ControlField | DataField] | None:
        res = []

        for field in self.control_fields:
            if field.tag == key:
                res.append(field)

        for field in self.data_fields:
            if field.tag == key:
                res.append(field)

        return res if len(res) > 0 else None

    def __contains__(self, key) -> bool:
        for field in self.control_fields:
            if field.tag == key:
                return True

        for field in self.data_fields:
            if field.tag == key:
                return True

        return False

    def __eq__(self, other) -> bool:
        if isinstance(other, Record):
            return (self.leader == other.leader and self.control_fields == other.control_fields
                    and self.data_fields == other.data_fields)
        return False

    def __repr__(self) -> str:
        return f"Record(leader={self.leader!r}, control_fields={self.control_fields!r}, data_fields={self.data_fields!r})"

    def to_breaker(self) -> str:
        lines = []
        if self.leader is not None:
            lines.append(self.leader.to_breaker())
        for field in self.control_fields:
            lines.append(field.to_breaker())
        for field in self.data_fields:
            lines.append(field.to_breaker())
        return '\n'.join(lines)

    def __str__(self) -> str:
        return self.to_breaker()
