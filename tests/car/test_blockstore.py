import unittest

from atexport.car.blockstore import DECODE_ERROR, Block, decode_blocks
from atexport.errors import CarFormatError
from ..test_utils import CarBuilder, cid_for, post


class BlockStoreTest(unittest.TestCase):
    def test_decodes_every_block(self):
        builder = CarBuilder()
        first = builder.add(post('one'))
        second = builder.add({'e': [], 'l': None})

        result = decode_blocks(builder.build())
        self.assertEqual(2, result.total_blocks)
        self.assertEqual(0, result.decode_errors)
        self.assertEqual(2, result.decoded_blocks)
        self.assertEqual([first, second], list(result.store))
        self.assertEqual('one', result.get_value(first)['text'])
        self.assertTrue(result.store[first].decoded)

    def test_undecodable_blocks_are_counted(self):
        builder = CarBuilder()
        good = builder.add(post('kept'))
        bad = builder.add_raw(b'\xff')
        worse = builder.add_raw(b'\xa1')

        result = decode_blocks(builder.build())
        self.assertEqual(3, result.total_blocks)
        self.assertEqual(2, result.decode_errors)
        self.assertEqual(1, result.decoded_blocks)
        self.assertIs(DECODE_ERROR, result.store[bad].value)
        self.assertIs(DECODE_ERROR, result.store[worse].value)
        self.assertFalse(result.store[bad].decoded)
        self.assertEqual(b'\xff', result.store[bad].data)
        self.assertEqual('kept', result.get_value(good)['text'])

    def test_duplicate_sections_are_counted(self):
        builder = CarBuilder()
        first = builder.add(post('repeated'))
        builder.add(post('repeated'))
        other = builder.add(post('other'))

        result = decode_blocks(builder.build())
        self.assertEqual(3, result.total_blocks)
        self.assertEqual([first, other], list(result.store))
        self.assertEqual('repeated', result.get_value(first)['text'])

    def test_missing_block_value(self):
        result = decode_blocks(CarBuilder().build())
        self.assertIsNone(result.get_value(cid_for(b'absent')))

    def test_framing_errors_are_fatal(self):
        builder = CarBuilder()
        builder.add(post('a post that will be cut short'))
        with self.assertRaises(CarFormatError):
            decode_blocks(builder.build()[:-3])

    def test_digest_verification(self):
        builder = CarBuilder()
        builder.add(post('honest'))
        tampered = builder.add_raw(b'\xa0', cid_for(b'something else'))
        data = builder.build()

        unverified = decode_blocks(data)
        self.assertEqual(0, unverified.decode_errors)
        self.assertEqual({}, unverified.get_value(tampered))

        verified = decode_blocks(data, verify=True)
        self.assertEqual(1, verified.decode_errors)
        self.assertIs(DECODE_ERROR, verified.store[tampered].value)

    def test_redecode_is_idempotent(self):
        builder = CarBuilder()
        for i in range(5):
            builder.add(post(f'post {i}'))
        builder.add_raw(b'\xff')
        data = builder.build()

        first = decode_blocks(data)
        second = decode_blocks(data)
        self.assertEqual(list(first.store), list(second.store))
        self.assertEqual([b.data for b in first.store.values()], [b.data for b in second.store.values()])
        self.assertEqual((first.total_blocks, first.decode_errors), (second.total_blocks, second.decode_errors))

    def test_decode_error_sentinel(self):
        self.assertFalse(DECODE_ERROR)
        self.assertEqual('DECODE_ERROR', repr(DECODE_ERROR))
        block = Block(cid_for(b'x'), b'x', DECODE_ERROR)
        self.assertFalse(block.decoded)


if __name__ == '__main__':
    unittest.main()
