"""Tests for CAR framing and block decoding.

| Test File          | Test Classes   | Tested Constructs          | Tested Functionalities                          |
|--------------------|----------------|----------------------------|-------------------------------------------------|
| test_reader.py     | ReaderTest     | read_car(), read_cid()     | Header, section iteration, CIDv0/v1, truncation |
| test_blockstore.py | BlockStoreTest | decode_blocks()            | Decode errors, digest checks, idempotence       |
"""
