from .blockstore import Block, BlockStoreResult, DECODE_ERROR, decode_blocks
from .reader import CarFile, CarReader, read_car, read_cid
