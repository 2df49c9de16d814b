"""Disk image creation and formatting.

Image layout:
    - MBR at LBA 0 with a single primary partition
    - Partition starts at 1MiB (LBA 2048) and spans the rest of the image
    - Partition holds a freshly formatted FAT filesystem with an empty root

The partition table is built from nobodd's MBR structures and the filesystem
is written by pyfatfs. Partitions large enough for a conforming FAT32 volume
(at least 65525 clusters) get FAT32 and partition type 0x0C; smaller ones get
FAT16 and type 0x0E, since hosts size-detect the FAT type from the cluster
count and would misread an undersized FAT32 volume.

The image is created sparse, so a 100MB image only uses a few hundred KB on
the host until files are written to it. ``format_partition`` is reused to wipe
the partition when all files are cleared.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from nobodd.mbr import MBRHeader, MBRPartition
from pyfatfs.PyFat import PyFat
from pyfatfs._exceptions import PyFATException

from embroidery_buddy.exceptions import DiskImageError
from embroidery_buddy.logging import LoggerFactory


log = LoggerFactory.for_disk()

SECTOR_SIZE = 512
PARTITION_START_LBA = 2048  # 1MiB alignment
PARTITION_TYPE_FAT16_LBA = 0x0E
PARTITION_TYPE_FAT32_LBA = 0x0C
MBR_SIGNATURE = 0xAA55
DEFAULT_LABEL = "EMBROIDERY"
# Smallest partitions pyfatfs will format; the FAT32 bound also yields >= 65525 clusters
MIN_FAT16_SECTORS = 8401
MIN_FAT32_SECTORS = 66601

_UNUSED_CHS = b"\xFE\xFF\xFF"
_EMPTY_ENTRY = bytes(16)


@dataclass(frozen=True)
class Partition:
    """Byte range of the FAT partition inside the image."""

    offset: int
    size: int

    @property
    def start_lba(self) -> int:
        return self.offset // SECTOR_SIZE

    @property
    def sectors(self) -> int:
        return self.size // SECTOR_SIZE


def fat_type_for(sectors: int) -> int:
    """Pick the FAT variant for a partition of ``sectors`` sectors.

    Raises:
        DiskImageError: If the partition is too small for FAT16
    """
    if sectors >= MIN_FAT32_SECTORS:
        return PyFat.FAT_TYPE_FAT32
    if sectors >= MIN_FAT16_SECTORS:
        return PyFat.FAT_TYPE_FAT16
    raise DiskImageError(f"Partition of {sectors} sectors is too small for a FAT filesystem")


def partition_type_for(fat_type: int) -> int:
    if fat_type == PyFat.FAT_TYPE_FAT32:
        return PARTITION_TYPE_FAT32_LBA
    return PARTITION_TYPE_FAT16_LBA


def _volume_label(label: str) -> str:
    cleaned = "".join(c if c.isascii() and c.isprintable() else "_" for c in label.upper())
    return cleaned[:11] or DEFAULT_LABEL


def make_mbr(partition: Partition, part_type: int) -> bytes:
    entry = MBRPartition(
        status=0x00,
        first_chs=_UNUSED_CHS,
        part_type=part_type,
        last_chs=_UNUSED_CHS,
        first_lba=partition.start_lba,
        part_size=partition.sectors,
    )
    header = MBRHeader(
        zero=0,
        physical_drive=0,
        seconds=0,
        minutes=0,
        hours=0,
        disk_sig=int.from_bytes(os.urandom(4), "little"),
        copy_protect=0,
        partition_1=bytes(entry),
        partition_2=_EMPTY_ENTRY,
        partition_3=_EMPTY_ENTRY,
        partition_4=_EMPTY_ENTRY,
        boot_sig=MBR_SIGNATURE,
    )
    return bytes(header)


def _wipe_partition(image_path: Path, partition: Partition) -> None:
    # Truncating and re-extending leaves the partition as sparse zeroes
    size = image_path.stat().st_size
    with open(image_path, "r+b") as handle:
        handle.truncate(partition.offset)
        handle.truncate(size)


def format_partition(
    image_path: Path | str, partition: Partition, label: str = DEFAULT_LABEL
) -> int:
    """Write an empty FAT filesystem into ``partition`` of an existing image.

    Everything previously stored in the partition is discarded. The image
    must not be open elsewhere.

    Returns:
        The pyfatfs FAT type that was written (16 or 32)

    Raises:
        DiskImageError: If the partition is too small or formatting fails
    """
    image_path = Path(image_path)
    fat_type = fat_type_for(partition.sectors)
    if fat_type != PyFat.FAT_TYPE_FAT32:
        log.info(
            f"Partition of {partition.sectors} sectors is below the FAT32 minimum, using FAT{fat_type}"
        )

    try:
        _wipe_partition(image_path, partition)
        fat = PyFat(offset=partition.offset)
        fat.mkfs(
            str(image_path),
            fat_type,
            size=partition.size,
            sector_size=SECTOR_SIZE,
            label=_volume_label(label),
        )
        fat.close()
    except (PyFATException, OSError) as error:
        raise DiskImageError(
            f"Failed to format {image_path}: {error}", str(image_path)
        ) from error
    return fat_type


def read_partition(handle: BinaryIO, image_size: int) -> Partition:
    handle.seek(0)
    sector = handle.read(SECTOR_SIZE)
    if len(sector) < SECTOR_SIZE:
        raise DiskImageError("Disk image has no valid MBR")
    header = MBRHeader.from_bytes(sector)
    if header.boot_sig != MBR_SIGNATURE:
        raise DiskImageError("Disk image has no valid MBR")
    entry = MBRPartition.from_bytes(header.partition_1)
    if entry.part_type == 0 or entry.part_size == 0:
        raise DiskImageError("Disk image has no partition")
    partition = Partition(
        offset=entry.first_lba * SECTOR_SIZE, size=entry.part_size * SECTOR_SIZE
    )
    if partition.offset + partition.size > image_size:
        raise DiskImageError("Partition extends past the end of the disk image")
    return partition


def find_partition(image_path: Path | str) -> Partition:
    """Locate the FAT partition of an existing image."""
    image_path = Path(image_path)
    try:
        with open(image_path, "rb") as handle:
            return read_partition(handle, image_path.stat().st_size)
    except OSError as error:
        raise DiskImageError(
            f"Failed to read partition table of {image_path}: {error}", str(image_path)
        ) from error


def create_disk_image(
    image_path: Path | str, size_mb: int, label: str = DEFAULT_LABEL
) -> Partition:
    """Create a sparse, single-partition FAT disk image.

    Args:
        image_path: Where to create the image; must not exist yet
        size_mb: Image size in MiB (34 or more gives FAT32, 6 to 33 gives FAT16)
        label: FAT volume label (upper-cased, at most 11 characters)

    Returns:
        The partition that was created

    Raises:
        DiskImageError: If the file exists, the size is too small or I/O fails
    """
    image_path = Path(image_path)
    size_bytes = int(size_mb) * 1024 * 1024
    total_sectors = size_bytes // SECTOR_SIZE
    partition = Partition(
        offset=PARTITION_START_LBA * SECTOR_SIZE,
        size=max(total_sectors - PARTITION_START_LBA, 0) * SECTOR_SIZE,
    )
    try:
        fat_type = fat_type_for(partition.sectors)
    except DiskImageError as error:
        raise DiskImageError(f"Disk size {size_mb}MB is too small", str(image_path)) from error

    try:
        image_path.parent.mkdir(parents=True, exist_ok=True)
        with open(image_path, "xb") as handle:
            handle.truncate(size_bytes)
            handle.write(make_mbr(partition, partition_type_for(fat_type)))
    except FileExistsError as error:
        raise DiskImageError(
            f"Disk image {image_path} already exists", str(image_path)
        ) from error
    except OSError as error:
        image_path.unlink(missing_ok=True)
        raise DiskImageError(
            f"Failed to create disk image {image_path}: {error}", str(image_path)
        ) from error

    try:
        format_partition(image_path, partition, label)
    except DiskImageError:
        image_path.unlink(missing_ok=True)
        raise

    log.info(f"Created disk image {image_path} ({size_mb}MB, FAT{fat_type})")
    return partition
