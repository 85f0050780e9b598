import io
import unittest

from marcutil.marc import Record, ControlField, DataField, SubField
from marcutil.reader import parse_binary_record, MarcStreamReader
from marcutil.writer import record_to_binary, MarcStreamWriter
from marcutil.errors import *

SAMPLE = (
    b"00070nam a2200049 a 4500"
    b"001000400000245001600004\x1e"
    b"123\x1e"
    b"10\x1faTitle\x1fcAuthor\x1e"
    b"\x1d"
)


def sample_record():
    record = Record("00070nam a2200049 a 4500")
    record.control_fields.append(ControlField("001", "123"))
    record.data_fields.append(DataField("245", "1", "0", [SubField("a", "Title"), SubField("c", "Author")]))
    return record


class TestBinaryDecode(unittest.TestCase):
    def test_decode(self):
        record = parse_binary_record(SAMPLE)

        self.assertEqual(record.leader.content, "00070nam a2200049 a 4500")
        self.assertEqual(record.control_fields, [ControlField("001", "123")])
        field = record.data_fields[0]
        self.assertEqual(field.tag, "245")
        self.assertEqual(field.ind1.value, "1")
        self.assertEqual(field.ind2.value, "0")
        self.assertEqual(record.get_values("245", "a"), ["Title"])
        self.assertEqual(record.get_values("245", "c"), ["Author"])

    def test_decode_blank_indicators_and_empty_control_field(self):
        data = (
            b"00059     2200049   4500"
            b"001000100000500000800001\x1e"
            b"\x1e"
            b"  \x1faX\x1fb\x1e"
            b"\x1d"
        )
        record = parse_binary_record(data)

        self.assertIsNone(record.control_fields[0].content)
        field = record.data_fields[0]
        self.assertIsNone(field.ind1.value)
        self.assertIsNone(field.ind2.value)
        self.assertEqual(field.subfields, [SubField("a", "X"), SubField("b")])

    def test_decode_utf8(self):
        record = Record()
        record.data_fields.append(DataField("245", "0", "0", [SubField("a", "Café über")]))

        decoded = parse_binary_record(record_to_binary(record))

        self.assertEqual(decoded.get_values("245", "a"), ["Café über"])

    def test_too_short(self):
        with self.assertRaises(InvalidSize):
            parse_binary_record(b"0007")

    def test_non_numeric_size(self):
        with self.assertRaises(InvalidSize):
            parse_binary_record(b"abcde" + SAMPLE[5:])

    def test_size_mismatch(self):
        with self.assertRaises(SizeMismatch) as ctx:
            parse_binary_record(SAMPLE + b"x")

        self.assertEqual(ctx.exception.reported, 70)
        self.assertEqual(ctx.exception.actual, 71)
        self.assertIn("70", str(ctx.exception))
        self.assertIn("71", str(ctx.exception))

    def test_shorter_than_leader(self):
        with self.assertRaises(InvalidSize):
            parse_binary_record(b"00010abcd\x1d")

    def test_misaligned_directory(self):
        with self.assertRaises(InvalidDirectory):
            parse_binary_record(SAMPLE.replace(b"2200049", b"2200050"))

    def test_empty_directory(self):
        with self.assertRaises(InvalidDirectory):
            parse_binary_record(b"00026nam a2200025 a 4500\x1e\x1d")

    def test_missing_directory_terminator(self):
        with self.assertRaises(InvalidDirectory):
            parse_binary_record(SAMPLE.replace(b"00004\x1e123", b"00004\x1f123"))

    def test_invalid_directory_entry(self):
        with self.assertRaises(InvalidDirectoryEntry):
            parse_binary_record(SAMPLE.replace(b"001000400000", b"00100x400000"))

    def test_field_out_of_bounds(self):
        with self.assertRaises(FieldOutOfBounds) as ctx:
            parse_binary_record(SAMPLE.replace(b"245001600004", b"245009900004"))

        self.assertEqual(ctx.exception.tag, "245")

    def test_invalid_encoding(self):
        with self.assertRaises(InvalidEncoding):
            parse_binary_record(SAMPLE.replace(b"123\x1e", b"\xff23\x1e"))


class TestBinaryEncode(unittest.TestCase):
    def test_encode(self):
        self.assertEqual(record_to_binary(sample_record()), SAMPLE)

    def test_encode_recomputes_leader(self):
        record = sample_record()
        record.set_leader("99999nam a2299999 a 4500")

        self.assertEqual(record_to_binary(record), SAMPLE)

    def test_encode_without_leader(self):
        record = sample_record()
        record.leader = None

        data = record_to_binary(record)

        self.assertEqual(data[:24], b"00070       00049       ")
        decoded = parse_binary_record(data)
        self.assertEqual(decoded.control_fields, record.control_fields)
        self.assertEqual(decoded.data_fields, record.data_fields)

    def test_round_trip(self):
        record = sample_record()
        record.data_fields.append(DataField("650", None, "0", [SubField("a", "Music"), SubField("x", "History $ facts")]))
        record.data_fields.append(DataField("856", "4", None))

        data = record_to_binary(record)
        decoded = parse_binary_record(data)

        self.assertEqual(decoded.control_fields, record.control_fields)
        self.assertEqual(decoded.data_fields, record.data_fields)
        self.assertEqual(decoded.leader.content, data[:24].decode("ascii"))
        self.assertEqual(record_to_binary(decoded), data)

    def test_field_too_long(self):
        record = Record()
        record.data_fields.append(DataField("500", None, None, [SubField("a", "x" * 10000)]))

        with self.assertRaises(ValueTooLarge) as ctx:
            record_to_binary(record)

        self.assertEqual(ctx.exception.width, 4)

    def test_record_too_long(self):
        record = Record()
        for _ in range(12):
            record.data_fields.append(DataField("500", None, None, [SubField("a", "x" * 9000)]))

        with self.assertRaises(ValueTooLarge):
            record_to_binary(record)

    def test_ignored_tags(self):
        data = record_to_binary(sample_record(), ignored_tags=["001"])

        decoded = parse_binary_record(data)

        self.assertEqual(decoded.control_fields, [])
        self.assertEqual(len(decoded.data_fields), 1)

    def test_empty_record(self):
        with self.assertRaises(EmptyRecord):
            record_to_binary(Record("00000nam a2200000 a 4500"))
        with self.assertRaises(EmptyRecord):
            record_to_binary(sample_record(), ignored_tags=["001", "245"])

    def test_stream_writer_writes_nothing_for_empty_record(self):
        buf = io.BytesIO()
        writer = MarcStreamWriter(buf)

        with self.assertRaises(EmptyRecord):
            writer.write(Record())

        self.assertEqual(buf.getvalue(), b"")


class TestMarcStreamReader(unittest.TestCase):
    def records(self):
        res = []
        for i in range(3):
            record = Record()
            record.control_fields.append(ControlField("001", str(i)))
            record.data_fields.append(DataField("245", "0", "0", [SubField("a", f"Title {i}")]))
            res.append(record)
        return res

    def test_reads_all_records(self):
        buf = io.BytesIO()
        MarcStreamWriter(buf).write_all(self.records())
        buf.seek(0)

        reader = MarcStreamReader(buf, chunk_size=7)
        records = list(reader)

        self.assertEqual([r.get_control_fields("001")[0].content for r in records], ["0", "1", "2"])
        self.assertEqual(reader.records_read, 3)

    def test_cursor(self):
        buf = io.BytesIO(b"".join(record_to_binary(r) + b"\n" for r in self.records()))

        reader = MarcStreamReader(buf)

        self.assertTrue(reader.has_next())
        self.assertEqual(reader.read_next().get_values("245", "a"), ["Title 0"])
        self.assertEqual(reader.read_next().get_values("245", "a"), ["Title 1"])
        self.assertEqual(reader.read_next().get_values("245", "a"), ["Title 2"])
        self.assertFalse(reader.has_next())
        self.assertIsNone(reader.read_next())

    def test_read_next_raises_on_bad_record(self):
        reader = MarcStreamReader(io.BytesIO(SAMPLE + SAMPLE[:-1] + b"x\x1d"))

        self.assertIsNotNone(reader.read_next())
        with self.assertRaises(SizeMismatch):
            reader.read_next()

    def test_iteration_stops_on_bad_record(self):
        records = self.records()
        data = record_to_binary(records[0]) + b"00010abcd\x1d" + record_to_binary(records[1])

        with self.assertLogs("marcutil.reader", level="ERROR") as logs:
            read = list(MarcStreamReader(io.BytesIO(data)))

        self.assertEqual(len(read), 1)
        self.assertIn("after 1", logs.output[0])

    def test_empty_input(self):
        self.assertEqual(list(MarcStreamReader(io.BytesIO(b""))), [])


if __name__ == '__main__':
    unittest.main()
