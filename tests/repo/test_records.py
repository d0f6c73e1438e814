import unittest

from atexport.repo.records import (Record, group_by_collection, make_uri, record_filename, record_to_json,
                                   split_key, to_json_compatible)
from ..test_utils import cid_for


def record(collection: str, rkey: str, n: int = 0) -> Record:
    return Record(cid_for(f'{collection}/{rkey}/{n}'.encode()), collection, rkey,
                  make_uri('did:plc:xyz', collection, rkey), {'$type': collection})


class RecordsTest(unittest.TestCase):
    def test_uri(self):
        self.assertEqual('at://did:plc:xyz/app.bsky.feed.post/abc123',
                         make_uri('did:plc:xyz', 'app.bsky.feed.post', 'abc123'))

    def test_split_key(self):
        self.assertEqual(('app.bsky.feed.post', 'abc'), split_key('app.bsky.feed.post/abc'))
        self.assertIsNone(split_key('no-separator'))
        self.assertIsNone(split_key('a/b/c'))
        self.assertIsNone(split_key('/abc'))
        self.assertIsNone(split_key('app.bsky.feed.post/'))

    def test_group_preserves_order(self):
        records = [record('a.post', '1'), record('b.like', '1'), record('a.post', '2'), record('b.like', '2')]
        grouped = group_by_collection(records)
        self.assertEqual(['a.post', 'b.like'], list(grouped))
        self.assertEqual(['1', '2'], [r.record_key for r in grouped['a.post']])
        self.assertEqual(['1', '2'], [r.record_key for r in grouped['b.like']])

    def test_record_filename(self):
        self.assertEqual('3k2a.json', record_filename(record('a.post', '3k2a'), 0))
        self.assertEqual('record_5.json', record_filename(record('a.post', ''), 4))

    def test_json_conversion(self):
        link = cid_for(b'image')
        value = {'embed': {'ref': link, 'size': 3}, 'sig': b'\x01\x02\x03', 'tags': [link]}
        converted = to_json_compatible(value)
        self.assertEqual({'$link': link.encode()}, converted['embed']['ref'])
        self.assertEqual(3, converted['embed']['size'])
        self.assertEqual({'$bytes': 'AQID'}, converted['sig'])
        self.assertEqual([{'$link': link.encode()}], converted['tags'])

    def test_record_to_json(self):
        r = record('app.bsky.feed.post', 'abc')
        described = record_to_json(r)
        self.assertEqual('at://did:plc:xyz/app.bsky.feed.post/abc', described['uri'])
        self.assertEqual(r.cid.encode(), described['cid'])
        self.assertEqual('abc', described['rkey'])


if __name__ == '__main__':
    unittest.main()
