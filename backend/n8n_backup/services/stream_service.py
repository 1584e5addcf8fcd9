# n8n_backup/services/stream_service.py
"""
Byte-stream plumbing shared by capture, restore and self-update.

Exec output arrives already demultiplexed by the Docker SDK as ordered
``(stdout, stderr)`` tuples, one side of each tuple set and the other None.
Archive downloads arrive as plain byte chunks.
"""
import copy
import io
import tarfile
from typing import BinaryIO, Iterable, Optional, Tuple

from n8n_backup.exceptions import StreamError

Frame = Tuple[Optional[bytes], Optional[bytes]]


def demux_stream(
    frames: Iterable[Frame],
    data_sink: BinaryIO,
    diag_sink: BinaryIO,
) -> Tuple[int, int]:
    """
    Route exec output: stdout to data_sink, stderr to diag_sink.

    The same object may be passed for both sinks to interleave them in the
    order the frames arrived.

    Returns:
        Tuple of (data_bytes, diag_bytes) written
    """
    data_bytes = 0
    diag_bytes = 0
    try:
        for stdout, stderr in frames:
            if stdout:
                data_sink.write(stdout)
                data_bytes += len(stdout)
            if stderr:
                diag_sink.write(stderr)
                diag_bytes += len(stderr)
    except OSError as e:
        raise StreamError(f"Failed while demultiplexing stream: {e}") from e
    return data_bytes, diag_bytes


def write_stream(chunks: Iterable[bytes], path: str) -> int:
    """Copy a plain chunk stream unmodified into a local file."""
    written = 0
    try:
        with open(path, "wb") as f:
            for chunk in chunks:
                f.write(chunk)
                written += len(chunk)
    except OSError as e:
        raise StreamError(f"Failed to write {path}: {e}") from e
    return written


def build_single_file_tar(src_path: str, arcname: str) -> io.BytesIO:
    """Pack one local file into an in-memory tar whose only entry is arcname."""
    tar_stream = io.BytesIO()
    try:
        with open(src_path, "rb") as f, tarfile.open(fileobj=tar_stream, mode="w") as tar:
            info = tar.gettarinfo(arcname=arcname, fileobj=f)
            tar.addfile(info, f)
    except OSError as e:
        raise StreamError(f"Failed to package {src_path}: {e}") from e
    tar_stream.seek(0)
    return tar_stream


def repack_single_file_tar(src_path: str, arcname: str) -> io.BytesIO:
    """
    Like build_single_file_tar, but src_path may itself be a tar.

    Snapshots taken by archive download are tars holding the database file;
    their first regular file entry is repacked under arcname. Any other file
    (e.g. an uploaded raw database) is packed as is.
    """
    try:
        if not tarfile.is_tarfile(src_path):
            return build_single_file_tar(src_path, arcname)

        tar_stream = io.BytesIO()
        with tarfile.open(src_path, "r:*") as src:
            member = next((m for m in src.getmembers() if m.isfile()), None)
            if member is None:
                raise StreamError(f"No file entry in archive {src_path}")
            info = copy.copy(member)
            info.name = arcname
            with tarfile.open(fileobj=tar_stream, mode="w") as dst:
                dst.addfile(info, src.extractfile(member))
    except (OSError, tarfile.TarError) as e:
        raise StreamError(f"Failed to repackage {src_path}: {e}") from e
    tar_stream.seek(0)
    return tar_stream
