"""Tests for bundle assembly and chunked exports.

| Test File          | Test Classes                          | Tested Constructs                   | Tested Functionalities                              |
|--------------------|---------------------------------------|-------------------------------------|-----------------------------------------------------|
| test_assembler.py  | AssemblerTest, FilenameTest           | assemble_bundle(), bundle_filename()| ZIP layout, manifest, naming, sanitising            |
| test_sink.py       | SinkTest                              | DirectorySink, PromptingSink        | Delivery, declined prompts, fallback                |
| test_controller.py | PlanPartsTest, BlobExportTest,        | ExportController                    | Chunking, declined parts, cancellation, failures    |
|                    | RecordExportTest                      |                                     |                                                     |
"""
