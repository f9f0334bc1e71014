"""Shared constants for the libretasks package.

Wire-format values from the TFLite schema (schema.fbs v3), the TFLite
metadata schema (metadata_schema.fbs) and the zip container format.
"""

# TFLite flatbuffer file identifier, stored at byte offset 4.
TFLITE_MAGIC = b"TFL3"
TFLITE_MAGIC_OFFSET = 4

# Metadata flatbuffer file identifier.
METADATA_MAGIC = b"M001"

# Name of the Model.metadata entry whose buffer holds the metadata flatbuffer.
METADATA_NAME = "TFLITE_METADATA"

# Zip signatures.
ZIP_LOCAL_HEADER_MAGIC = b"PK\x03\x04"
ZIP_CENTRAL_HEADER_MAGIC = b"PK\x01\x02"
ZIP_END_OF_CENTRAL_DIR_MAGIC = b"PK\x05\x06"

# Maximum zip comment length plus the fixed EOCD record size.
ZIP_EOCD_SEARCH_WINDOW = 0xFFFF + 22

# Smallest buffer that can hold any supported magic signature.
MIN_MODEL_SIZE = 8
