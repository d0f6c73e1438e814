import asyncio
import io
import json
import unittest
import zipfile
from pathlib import Path

import httpx

from atexport.errors import BundleSaveError, NoSaveTargetError
from atexport.events import CancellationSignal, EventChannel, LogEntry, LogLevel, Progress
from atexport.export.assembler import MANIFEST_NAME
from atexport.export.controller import ExportController, JobStatus, plan_parts
from atexport.export.sink import PromptingSink, SaveLocation
from atexport.repo.mst import TraversalStats
from atexport.repo.processor import CarProcessingResult, process_car
from atexport.repo.records import Record, make_uri
from atexport.settings import DownloadOptions, ExportOptions
from ..test_utils import TEST_DID, build_repository, cid_for, no_sleep, post


class RecordingSink:
    """Keeps saved bundles in memory; declines the prompts whose 1-based number is in decline."""

    def __init__(self, decline=()):
        self.decline = set(decline)
        self.asked: list[str] = []
        self.saved: dict[str, bytes] = {}

    def choose(self, name):
        self.asked.append(name)
        if len(self.asked) in self.decline:
            return None
        return SaveLocation(name, Path(name))

    def save(self, location, data):
        self.saved[location.name] = data
        return location.name

    def bundle(self, index: int) -> zipfile.ZipFile:
        return zipfile.ZipFile(io.BytesIO(list(self.saved.values())[index]))


def blob_url(cid: str) -> str:
    return f'https://pds.test/xrpc/com.atproto.sync.getBlob?did={TEST_DID}&cid={cid}'


def ok_handler(requested: list | None = None, missing=(), cancel_on=None, cancel=None):
    async def handler(request):
        cid = request.url.params['cid']
        if requested is not None:
            requested.append(cid)
        if cid == cancel_on:
            cancel.cancel()
        if cid in missing:
            return httpx.Response(404)
        return httpx.Response(200, content=cid.encode(), headers={'content-type': 'image/png'})
    return handler


def export_blobs(handler, cids, sink, part_size=10, cancel=None, channel=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            controller = ExportController(sink, ExportOptions(part_size=part_size), DownloadOptions(max_retries=1),
                                          client, channel, cancel, sleep=no_sleep)
            return await controller.export_blobs(TEST_DID, cids, blob_url)

    return asyncio.run(run())


def log_messages(channel: EventChannel) -> list[str]:
    return [event.message for event in channel.drain() if isinstance(event, LogEntry)]


class PlanPartsTest(unittest.TestCase):
    def test_large_input_is_split(self):
        parts = plan_parts(list(range(2500)), 1000)
        self.assertEqual([1000, 1000, 500], [len(part) for part in parts])
        self.assertEqual(list(range(2500)), [item for part in parts for item in part])

    def test_threshold_is_inclusive(self):
        self.assertEqual([1000], [len(part) for part in plan_parts(list(range(1000)), 1000)])
        self.assertEqual([1000, 1], [len(part) for part in plan_parts(list(range(1001)), 1000)])

    def test_empty_input(self):
        self.assertEqual([[]], plan_parts([], 1000))

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            plan_parts([1], 0)


class BlobExportTest(unittest.TestCase):
    def test_single_bundle(self):
        sink = RecordingSink()
        channel = EventChannel()
        job = export_blobs(ok_handler(missing={'gone'}), ['a', 'gone', 'b'], sink, channel=channel)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertFalse(job.cancelled)
        [part] = job.parts
        self.assertEqual((1, 3, 2, 1, False), (part.index, part.total_in_part, part.succeeded, part.failed,
                                               part.skipped))
        [name] = sink.saved
        self.assertTrue(name.startswith('atexport-did_plc_xyz-'))
        self.assertTrue(name.endswith('-blobs.zip'))
        self.assertEqual(name, part.saved_as)

        with sink.bundle(0) as bundle:
            self.assertEqual(['blobs/a.png', 'blobs/b.png', MANIFEST_NAME], bundle.namelist())
            self.assertEqual(b'a', bundle.read('blobs/a.png'))
            manifest = json.loads(bundle.read(MANIFEST_NAME))
        self.assertEqual('blobs', manifest['kind'])
        self.assertEqual(TEST_DID, manifest['owner_id'])
        self.assertEqual((1, 1, 3, 2, 1), (manifest['part'], manifest['total_parts'], manifest['total_items'],
                                           manifest['succeeded'], manifest['failed']))
        self.assertEqual(['gone'], manifest['extra']['failed_cids'])

        messages = log_messages(channel)
        self.assertIn("1 blobs failed to download and were skipped", messages)
        self.assertEqual(messages, [entry.message for entry in job.logs])

    def test_large_export_is_split_into_parts(self):
        cids = [f'blob{i:02d}' for i in range(25)]
        sink = RecordingSink()
        channel = EventChannel()
        job = export_blobs(ok_handler(), cids, sink, channel=channel)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual([1, 2, 3], [part.index for part in job.parts])
        self.assertEqual([10, 10, 5], [part.total_in_part for part in job.parts])
        self.assertEqual(25, job.succeeded)
        self.assertEqual([True, True, True],
                         [name.endswith(f'-blobs_part_{i:02d}_of_03.zip') for i, name in enumerate(sink.saved, 1)])

        with sink.bundle(1) as bundle:
            names = bundle.namelist()
            manifest = json.loads(bundle.read(MANIFEST_NAME))
        self.assertEqual([f'blobs_part_02/blob{i}.png' for i in range(10, 20)], names[:-1])
        self.assertEqual((2, 3, 10), (manifest['part'], manifest['total_parts'], manifest['total_items']))

        events = channel.drain()
        messages = [e.message for e in events if isinstance(e, LogEntry)]
        self.assertTrue(messages[0].startswith("Large export detected: 25 blobs"))
        self.assertTrue(any(m.startswith("[Part 2] ") for m in messages))
        self.assertTrue(any(m.endswith("Part 2 of 3 saved successfully! (10 blobs)") for m in messages))

        progress = [e for e in events if isinstance(e, Progress)]
        self.assertTrue(all(p.total == 25 for p in progress))
        self.assertEqual(25, progress[-1].current)

    def test_declined_part_is_skipped(self):
        cids = [f'blob{i:02d}' for i in range(25)]
        requested = []
        sink = RecordingSink(decline={2})
        job = export_blobs(ok_handler(requested), cids, sink)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual(3, len(sink.asked))
        self.assertEqual(2, len(sink.saved))
        self.assertEqual([False, True, False], [part.skipped for part in job.parts])
        self.assertIsNone(job.parts[1].saved_as)
        self.assertEqual(sorted(cids[:10] + cids[20:]), sorted(requested))

    def test_cancellation_keeps_completed_parts(self):
        cids = [f'blob{i:02d}' for i in range(25)]
        cancel = CancellationSignal()
        channel = EventChannel()
        sink = RecordingSink()
        job = export_blobs(ok_handler(cancel_on='blob12', cancel=cancel), cids, sink, cancel=cancel,
                           channel=channel)

        self.assertEqual(JobStatus.CANCELLED, job.status)
        self.assertTrue(job.cancelled)
        self.assertEqual(1, len(sink.saved))
        self.assertEqual([1], [part.index for part in job.parts])
        self.assertIn("Download cancelled by user", log_messages(channel))

    def test_cancelled_before_start(self):
        cancel = CancellationSignal()
        cancel.cancel()
        sink = RecordingSink()
        job = export_blobs(ok_handler(), ['a'], sink, cancel=cancel)

        self.assertEqual(JobStatus.CANCELLED, job.status)
        self.assertEqual([], sink.asked)
        self.assertEqual([], job.parts)

    def test_nothing_to_export(self):
        sink = RecordingSink()
        job = export_blobs(ok_handler(), [], sink)
        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual([], sink.asked)
        self.assertEqual(["No blobs found in repository"], [entry.message for entry in job.logs])

    def test_no_save_target_is_fatal(self):
        def chooser(name):
            raise EOFError("no terminal")

        channel = EventChannel()
        with self.assertRaises(NoSaveTargetError):
            export_blobs(ok_handler(), ['a'], PromptingSink(chooser), channel=channel)

        errors = [e for e in channel.drain() if isinstance(e, LogEntry) and e.level == LogLevel.ERROR]
        self.assertEqual(1, len(errors))

    def test_client_is_required(self):
        async def run():
            await ExportController(RecordingSink()).export_blobs(TEST_DID, ['a'], blob_url)

        with self.assertRaises(ValueError):
            asyncio.run(run())


def processing_result(count: int) -> CarProcessingResult:
    records = []
    for i in range(count):
        rkey = f'{i:05d}'
        records.append(Record(cid_for(rkey.encode()), 'app.bsky.feed.post', rkey,
                              make_uri(TEST_DID, 'app.bsky.feed.post', rkey), post(rkey)))
    return CarProcessingResult(records, TEST_DID, count * 2, 0, TraversalStats(records_found=count))


def export_records(result, sink, part_size=1000, cancel=None, channel=None):
    controller = ExportController(sink, ExportOptions(part_size=part_size), reporter=channel, cancel=cancel)
    return asyncio.run(controller.export_records(result, 'alice.test'))


class RecordExportTest(unittest.TestCase):
    def test_records_from_archive(self):
        result = process_car(build_repository({
            'app.bsky.feed.post/3k2a': post('hello'),
            'app.bsky.actor.profile/self': {'$type': 'app.bsky.actor.profile', 'displayName': 'Alice'},
        }))
        sink = RecordingSink()
        job = export_records(result, sink)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual(2, job.succeeded)
        [name] = sink.saved
        self.assertTrue(name.startswith('atexport-alice.test-'))
        self.assertTrue(name.endswith('-records.zip'))

        with sink.bundle(0) as bundle:
            self.assertEqual({'app.bsky.feed.post/3k2a.json', 'app.bsky.actor.profile/self.json', MANIFEST_NAME},
                             set(bundle.namelist()))
            self.assertEqual('hello', json.loads(bundle.read('app.bsky.feed.post/3k2a.json'))['text'])
            manifest = json.loads(bundle.read(MANIFEST_NAME))
        self.assertEqual('records', manifest['kind'])
        self.assertEqual(TEST_DID, manifest['extra']['did'])
        self.assertEqual(4, manifest['extra']['total_blocks'])

    def test_large_record_export_is_split(self):
        sink = RecordingSink()
        job = export_records(processing_result(2500), sink)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual([1000, 1000, 500], [part.total_in_part for part in job.parts])
        self.assertEqual(3, len(sink.saved))
        self.assertTrue(all('_part_0' in name for name in sink.saved))

        with sink.bundle(2) as bundle:
            names = [name for name in bundle.namelist() if name != MANIFEST_NAME]
        self.assertEqual(500, len(names))
        self.assertTrue(all(name.startswith('records_part_03_of_03/app.bsky.feed.post/') for name in names))

    def test_declined_records_bundle(self):
        sink = RecordingSink(decline={1})
        job = export_records(processing_result(3), sink)
        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual({}, sink.saved)
        self.assertTrue(job.parts[0].skipped)

    def test_cancelled_records_export(self):
        cancel = CancellationSignal()
        cancel.cancel()
        sink = RecordingSink()
        job = export_records(processing_result(3), sink, cancel=cancel)
        self.assertEqual(JobStatus.CANCELLED, job.status)
        self.assertEqual({}, sink.saved)

    def test_no_records_saves_nothing(self):
        sink = RecordingSink()
        channel = EventChannel()
        job = export_records(process_car(build_repository({})), sink, channel=channel)

        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertEqual([], sink.asked)
        self.assertEqual([], job.parts)
        self.assertIn("No records found in repository", log_messages(channel))

    def test_save_failure_is_logged_and_raised(self):
        class FullDisk(RecordingSink):
            def save(self, location, data):
                raise OSError(28, "No space left on device")

        channel = EventChannel()
        with self.assertRaises(BundleSaveError) as cm:
            export_records(processing_result(2), FullDisk(), channel=channel)

        self.assertIsInstance(cm.exception.__cause__, OSError)
        errors = [e.message for e in channel.drain() if isinstance(e, LogEntry) and e.level == LogLevel.ERROR]
        self.assertEqual(1, len(errors))
        self.assertTrue(errors[0].startswith("Export failed: Could not save atexport-alice.test-"))
        self.assertIn("No space left on device", errors[0])

    def test_unknown_owner_is_reported(self):
        result = CarProcessingResult([], None, 0, 0, TraversalStats())
        channel = EventChannel()
        job = export_records(result, RecordingSink(), channel=channel)
        self.assertEqual(JobStatus.COMPLETE, job.status)
        self.assertIn("No repository commit found; owner is unknown", log_messages(channel))


if __name__ == '__main__':
    unittest.main()
