from .kv_file import KeyValueFile, PlainFileStore

__all__ = ["KeyValueFile", "PlainFileStore"]
