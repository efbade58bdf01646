"""
Directory-backed JSON blob store used by the fetch ledgers.
Each key maps to one '<key>.json' file; writes go through a temp file and an atomic rename
so a failure mid-write never leaves a half-written blob behind.
"""

import json
import os
import tempfile
from typing import Any, List, Optional


class CorruptBlobError(Exception):
    """Raised when a stored blob exists but cannot be parsed."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"corrupt blob {key!r}: {reason}")
        self.key = key
        self.reason = reason


class JsonBlobStore:
    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, key: str) -> str:
        if not key or '/' in key or '\\' in key or key.startswith('.'):
            raise ValueError(f"invalid blob key: {key!r}")
        return os.path.join(self.root, f"{key}.json")

    def exists(self, key: str) -> bool:
        return os.path.isfile(self.path_for(key))

    def read(self, key: str) -> Optional[Any]:
        """Return the parsed blob, None if it does not exist, or raise CorruptBlobError."""
        path = self.path_for(key)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as fh:
                return json.load(fh)
        except (OSError, ValueError) as ex:
            raise CorruptBlobError(key, str(ex))

    def write(self, key: str, obj: Any) -> str:
        path = self.path_for(key)
        fd, tmp_path = tempfile.mkstemp(prefix='.tmp-', suffix='.json', dir=self.root)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                json.dump(obj, fh, indent=2, ensure_ascii=False)
                fh.write('\n')
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        if not os.path.isfile(path):
            return False
        os.remove(path)
        return True

    def list_keys(self, prefix: str = '', suffix: str = '') -> List[str]:
        """Return stored keys (without the .json extension) matching prefix/suffix, sorted."""
        if not os.path.isdir(self.root):
            return []
        keys = []
        for name in os.listdir(self.root):
            if not name.endswith('.json') or name.startswith('.'):
                continue
            key = name[: -len('.json')]
            if key.startswith(prefix) and key.endswith(suffix):
                keys.append(key)
        return sorted(keys)
