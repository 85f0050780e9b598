RT = b'\x1d'
FT = b'\x1e'
US = b'\x1f'

LEADER_SIZE = 24
TAG_SIZE = 3
INDICATOR_SIZE = 1
SUBFIELD_CODE_SIZE = 1
DIRECTORY_ENTRY_SIZE = 12
RECORD_LENGTH_SIZE = 5

FIELD_LENGTH_WIDTH = 4
FIELD_START_WIDTH = 5
BASE_ADDRESS_OFFSET = 12

FIRST_DATA_TAG = '010'

BREAKER_LEADER_TAG = 'LDR'
BREAKER_SF_DELIMITER = '$'
BREAKER_SF_DELIMITER_ESCAPE = '${dollar}'
BREAKER_NO_INDICATOR = '\\'

MARCXML_NAMESPACE = 'http://www.loc.gov/MARC21/slim'
MARCXML_XSI_NAMESPACE = 'http://www.w3.org/2001/XMLSchema-instance'
MARCXML_SCHEMA_LOCATION = 'http://www.loc.gov/MARC21/slim http://www.loc.gov/standards/marcxml/schema/MARC21slim.xsd'
