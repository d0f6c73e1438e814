"""Tests for repository reconstruction.

| Test File         | Test Classes                       | Tested Constructs                 | Tested Functionalities                              |
|-------------------|------------------------------------|-----------------------------------|-----------------------------------------------------|
| test_classify.py  | ClassifyTest, LocateCommitTest     | classify(), locate_commit()       | Shape rules, classification order, commit lookup    |
| test_records.py   | RecordsTest                        | make_uri(), group_by_collection() | URIs, key splitting, grouping, JSON conversion      |
| test_mst.py       | KeyReconstructionTest, WalkerTest  | MSTWalker                         | Running keys, dedup, cycles, anomalies, fallback    |
| test_processor.py | ProcessCarTest                     | process_car()                     | End to end decoding, resilience, idempotence        |
"""
