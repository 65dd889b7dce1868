# artifacts.py
"""
Binary encoding of everything that travels between ledger maintainer, holder
and verifier, plus byte-blob load/save.

Blob layout:
    b"NPZK" | version (1 byte) | kind (1 byte) | body

Body conventions:
- field element: 32 bytes, big-endian, must be < FIELD_MODULUS
- counts: 4 bytes, big-endian
- relation shape: hash parameters | height | public field mask (1 byte,
  bit i set when NOTE_FIELDS[i] is public)
- keys: relation shape | relation id (32 bytes) | count | zksnake key bytes
- proof: zksnake proof bytes (compressed A, B, C)

Curve points are encoded and checked by zksnake (compressed, on the curve and
in the prime order subgroup). Decoding rejects anything truncated, trailing,
out of range or off the curve with SerializationError.
"""

import json
import logging
import struct
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Type, Union

from zksnake.groth16 import Proof
from zksnake.groth16 import ProvingKey as Groth16ProvingKey
from zksnake.groth16 import VerifyingKey as Groth16VerifyingKey

from errors import ArtifactIOError, ConstructionError, SerializationError
from hash_utils import FIELD_MODULUS, HashParams
from merkle_tree import MAX_TREE_HEIGHT, MerkleTree
from note import NOTE_FIELDS, Note
from possession import ProvingKey, VerifyingKey
from zk_merkle import CURVE, PublicInputs, RelationShape

logger = logging.getLogger(__name__)

MAGIC = b"NPZK"
VERSION = 2

KIND_HASH_PARAMS = 1
KIND_PROVING_KEY = 2
KIND_VERIFYING_KEY = 3
KIND_PROOF = 4
KIND_PUBLIC_INPUTS = 5
KIND_MERKLE_TREE = 6

PathLike = Union[str, Path]


#
# Low level writer / reader
#


class _Writer:
    def __init__(self) -> None:
        self.parts: List[bytes] = []

    def u8(self, value: int) -> None:
        self.parts.append(struct.pack(">B", value))

    def u32(self, value: int) -> None:
        self.parts.append(struct.pack(">I", value))

    def raw(self, data: bytes) -> None:
        self.parts.append(data)

    def scalar(self, value: int) -> None:
        self.parts.append(value.to_bytes(32, byteorder="big"))

    def sized(self, data: bytes) -> None:
        self.u32(len(data))
        self.raw(data)

    def getvalue(self) -> bytes:
        return b"".join(self.parts)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise SerializationError(
                f"truncated blob: wanted {n} bytes at offset {self.pos}, have {len(self.data) - self.pos}"
            )
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u8(self) -> int:
        return struct.unpack(">B", self.take(1))[0]

    def u32(self) -> int:
        return struct.unpack(">I", self.take(4))[0]

    def scalar(self) -> int:
        value = int.from_bytes(self.take(32), byteorder="big")
        if value >= FIELD_MODULUS:
            raise SerializationError(f"value {value:#x} is out of range")
        return value

    def count(self, item_size: int) -> int:
        n = self.u32()
        if n * item_size > len(self.data) - self.pos:
            raise SerializationError(f"list of {n} items exceeds the blob")
        return n

    def sized(self) -> bytes:
        return self.take(self.count(1))

    def finish(self) -> None:
        if self.pos != len(self.data):
            raise SerializationError(f"{len(self.data) - self.pos} trailing bytes")


def _decode_snark(cls, data: bytes, what: str):
    """
    Parse zksnake bytes and insist they re-encode to exactly the same bytes,
    which rules out truncated or padded lists zksnake itself would accept.
    """
    try:
        obj = cls.from_bytes(data, CURVE)
    # zksnake reports bad lengths with assert and bad points with ValueError
    except (AssertionError, ValueError, IndexError) as e:
        raise SerializationError(f"invalid {what}: {e}") from e
    if bytes(obj.to_bytes()) != data:
        raise SerializationError(f"invalid {what}: non-canonical encoding")
    return obj


#
# Bodies
#


def _write_hash_params(w: _Writer, params: HashParams) -> None:
    w.u32(params.exponent)
    w.u32(params.rounds)
    for c in params.round_constants:
        w.scalar(c)


def _read_hash_params(r: _Reader) -> HashParams:
    exponent = r.u32()
    constants = tuple(r.scalar() for _ in range(r.count(32)))
    try:
        return HashParams(exponent=exponent, round_constants=constants)
    except ConstructionError as e:
        raise SerializationError(f"invalid hash parameters: {e}") from e


def _write_shape(w: _Writer, shape: RelationShape) -> None:
    _write_hash_params(w, shape.hash_params)
    w.u32(shape.height)
    w.u8(sum(1 << i for i, name in enumerate(NOTE_FIELDS) if name in shape.public_fields))


def _read_shape(r: _Reader) -> RelationShape:
    params = _read_hash_params(r)
    height = r.u32()
    mask = r.u8()
    if not 1 <= height <= MAX_TREE_HEIGHT:
        raise SerializationError(f"unsupported tree height {height}")
    if mask >> len(NOTE_FIELDS):
        raise SerializationError(f"bad public field mask {mask:#x}")
    public = frozenset(name for i, name in enumerate(NOTE_FIELDS) if mask & (1 << i))
    try:
        return RelationShape(height=height, hash_params=params, public_fields=public)
    except ConstructionError as e:
        raise SerializationError(f"invalid relation shape: {e}") from e


def _write_vk(w: _Writer, vk: VerifyingKey) -> None:
    _write_shape(w, vk.shape)
    w.raw(vk.relation_id)
    w.sized(bytes(vk.key.to_bytes()))


def _read_vk(r: _Reader) -> VerifyingKey:
    shape = _read_shape(r)
    relation_id = r.take(32)
    key = _decode_snark(Groth16VerifyingKey, r.sized(), "verifying key")
    # one commitment for the constant wire, the root and each public note field
    expected = 2 + len(shape.public_fields)
    if len(key.ic) != expected:
        raise SerializationError(f"verifying key has {len(key.ic)} input commitments, relation needs {expected}")
    return VerifyingKey(shape=shape, relation_id=relation_id, key=key)


def _write_pk(w: _Writer, pk: ProvingKey) -> None:
    _write_shape(w, pk.shape)
    w.raw(pk.relation_id)
    w.sized(bytes(pk.key.to_bytes()))


def _read_pk(r: _Reader) -> ProvingKey:
    shape = _read_shape(r)
    relation_id = r.take(32)
    key = _decode_snark(Groth16ProvingKey, r.sized(), "proving key")
    return ProvingKey(shape=shape, relation_id=relation_id, key=key)


def _write_proof(w: _Writer, proof: Proof) -> None:
    w.raw(bytes(proof.to_bytes()))


def _read_proof(r: _Reader) -> Proof:
    return _decode_snark(Proof, r.take(len(r.data) - r.pos), "proof")


def _write_public_inputs(w: _Writer, inputs: PublicInputs) -> None:
    w.scalar(inputs.root)
    w.scalar(inputs.serial_number)
    if inputs.amount is None:
        w.u8(0)
    else:
        w.u8(1)
        w.scalar(inputs.amount)


def _read_public_inputs(r: _Reader) -> PublicInputs:
    root = r.scalar()
    serial_number = r.scalar()
    flag = r.u8()
    if flag not in (0, 1):
        raise SerializationError(f"bad amount flag {flag}")
    amount = r.scalar() if flag else None
    return PublicInputs(root=root, serial_number=serial_number, amount=amount)


def _write_tree(w: _Writer, tree: MerkleTree) -> None:
    _write_hash_params(w, tree.params)
    w.u32(tree.height)
    w.u32(tree.num_leaves)
    for leaf in tree.leaves[:tree.num_leaves]:
        w.scalar(leaf)


def _read_tree(r: _Reader) -> MerkleTree:
    params = _read_hash_params(r)
    height = r.u32()
    # checked before MerkleTree allocates 2^height leaves
    if not 1 <= height <= MAX_TREE_HEIGHT:
        raise SerializationError(f"unsupported tree height {height} (at most {MAX_TREE_HEIGHT})")
    leaves = [r.scalar() for _ in range(r.count(32))]
    try:
        return MerkleTree(params, leaves, height)
    except ConstructionError as e:
        raise SerializationError(f"invalid tree snapshot: {e}") from e


_CODECS: Dict[Type, Tuple[int, Callable, Callable]] = {
    HashParams: (KIND_HASH_PARAMS, _write_hash_params, _read_hash_params),
    ProvingKey: (KIND_PROVING_KEY, _write_pk, _read_pk),
    VerifyingKey: (KIND_VERIFYING_KEY, _write_vk, _read_vk),
    Proof: (KIND_PROOF, _write_proof, _read_proof),
    PublicInputs: (KIND_PUBLIC_INPUTS, _write_public_inputs, _read_public_inputs),
    MerkleTree: (KIND_MERKLE_TREE, _write_tree, _read_tree),
}


def dumps(obj) -> bytes:
    try:
        kind, write, _ = _CODECS[type(obj)]
    except KeyError:
        raise TypeError(f"cannot serialize {type(obj).__name__}") from None
    w = _Writer()
    w.raw(MAGIC)
    w.u8(VERSION)
    w.u8(kind)
    write(w, obj)
    return w.getvalue()


def loads(data: bytes, cls: Type):
    """
    Decode a blob that must hold an object of type cls.

    Raises:
        SerializationError: wrong header or kind, corrupt or truncated body
    """
    kind, _, read = _CODECS[cls]
    r = _Reader(data)
    if r.take(len(MAGIC)) != MAGIC:
        raise SerializationError("not an artifact blob (bad magic)")
    version = r.u8()
    if version != VERSION:
        raise SerializationError(f"unsupported artifact version {version}")
    found = r.u8()
    if found != kind:
        raise SerializationError(f"expected a {cls.__name__} blob (kind {kind}), found kind {found}")
    obj = read(r)
    r.finish()
    return obj


#
# Byte-blob load/save
#


def save_blob(path: PathLike, data: bytes) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        raise ArtifactIOError(f"could not write {path}: {e}") from e
    logger.debug(f"Wrote {len(data)} bytes to {path}")


def load_blob(path: PathLike) -> bytes:
    path = Path(path)
    try:
        return path.read_bytes()
    except OSError as e:
        raise ArtifactIOError(f"could not read {path}: {e}") from e


def save_artifact(path: PathLike, obj) -> None:
    save_blob(path, dumps(obj))


def load_artifact(path: PathLike, cls: Type):
    return loads(load_blob(path), cls)


#
# Holder wallet (JSON)
#


def save_wallet(path: PathLike, notes: Dict[int, Note]) -> None:
    """
    Write the holder's note plaintexts, keyed by leaf index. Never share this file.
    """
    entries = [
        {
            "index": index,
            "amount": hex(note.amount),
            "serial_number": hex(note.serial_number),
            "nonce": hex(note.nonce),
        }
        for index, note in sorted(notes.items())
    ]
    save_blob(path, json.dumps({"notes": entries}, indent=2).encode())


def load_wallet(path: PathLike) -> Dict[int, Note]:
    try:
        data = json.loads(load_blob(path))
        return {
            int(entry["index"]): Note(
                amount=int(entry["amount"], 16),
                serial_number=int(entry["serial_number"], 16),
                nonce=int(entry["nonce"], 16),
            )
            for entry in data["notes"]
        }
    except (ValueError, KeyError, TypeError, ConstructionError) as e:
        raise SerializationError(f"corrupt wallet {path}: {e}") from e
