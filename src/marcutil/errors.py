class MarcError(Exception):
    pass


class InvalidLength(MarcError):
    """A tag, indicator, subfield code or leader has the wrong byte count."""


class InvalidSize(MarcError):
    """The record length header of a binary record is missing or not numeric."""


class SizeMismatch(MarcError):
    def __init__(self, reported: int, actual: int) -> None:
        super().__init__(f"Record has incorrect size reported={reported} real={actual}")
        self.reported = reported
        self.actual = actual


class InvalidDirectory(MarcError):
    pass


class InvalidDirectoryEntry(MarcError):
    pass


class FieldOutOfBounds(MarcError):
    def __init__(self, tag: str, start: int, end: int, size: int) -> None:
        super().__init__(f"Field {tag} spans bytes {start}..{end} past the end of a {size} byte record")
        self.tag = tag
        self.start = start
        self.end = end
        self.size = size


class InvalidEncoding(MarcError):
    pass


class MissingTag(MarcError):
    pass


class ValueTooLarge(MarcError):
    def __init__(self, name: str, value: int, width: int) -> None:
        super().__init__(f"{name} {value} does not fit in {width} digits")
        self.name = name
        self.value = value
        self.width = width


class XmlParseError(MarcError):
    pass


class EmptyRecord(MarcError):
    """A record has no fields to write as ISO 2709."""


class InvalidRecordObject(MarcError):
    pass
