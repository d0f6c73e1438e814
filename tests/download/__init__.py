"""Tests for fetching.

| Test File            | Test Classes                 | Tested Constructs           | Tested Functionalities                             |
|----------------------|------------------------------|-----------------------------|----------------------------------------------------|
| test_manager.py      | DownloadManagerTest          | DownloadManager.run()       | Concurrency bound, retries, backoff, cancellation  |
| test_client.py       | RepoClientTest               | RepoClient                  | Repository download, blob listing pagination       |
| test_rate_limit.py   | RateLimitTrackerTest         | RateLimitTracker            | Header parsing, status message                     |
| test_content_types.py| ContentTypesTest             | extension_for()             | Extension table, parameters, unknown types         |
"""
