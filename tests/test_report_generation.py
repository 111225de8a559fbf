import os, sys, json, tempfile, shutil, hashlib

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)
sys.path.insert(0, os.path.dirname(__file__))

from imgjoin_core import headless_main  # type: ignore
from split_helpers import write_split, sha  # type: ignore


def test_report_json_generation():
    tmp = tempfile.mkdtemp(prefix='imgjoin_rep_')
    try:
        data = os.urandom(5000)
        mpath = write_split(tmp, data, size=17)
        out = os.path.join(tmp, 'o.img')
        assert headless_main([mpath, out, '--report', 'json']) == 0
        report_path = os.path.join(tmp, 'join_report.json')
        assert os.path.exists(report_path)
        rep = json.loads(open(report_path, 'r', encoding='utf-8').read())
        assert rep['exit_code'] == 0 and rep['success'] is True
        assert rep['sha256'] == sha(data)
        assert rep['size_matched'] is False
        assert rep['warnings']
        assert rep['error'] is None
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_report_markdown_on_failure():
    tmp = tempfile.mkdtemp(prefix='imgjoin_rep_')
    try:
        mpath = write_split(tmp, os.urandom(5000), original_sha=hashlib.sha256(b'x').hexdigest())
        out = os.path.join(tmp, 'o.img')
        assert headless_main([mpath, out, '--report', 'md']) == 1
        text = open(os.path.join(tmp, 'join_report.md'), 'r', encoding='utf-8').read()
        assert '# Join Report' in text
        assert 'Overview' in text
        assert 'Exit Code: 1' in text
        assert 'final SHA-256 mismatch' in text
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
