import os, sys, tempfile, json, shutil, unittest
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE_DIR not in sys.path:
	sys.path.insert(0, BASE_DIR)
sys.path.insert(0, os.path.dirname(__file__))

from imgjoin_core import _load_config_file, headless_main, ConfigError, EXIT_CONFIG_ERROR  # type: ignore
from split_helpers import write_split  # type: ignore

class TestConfigLoading(unittest.TestCase):
	def setUp(self):
		self.tempdir = tempfile.mkdtemp(prefix='imgjoin_cfg_')

	def tearDown(self):
		shutil.rmtree(self.tempdir, ignore_errors=True)

	def test_load_json(self):
		path = os.path.join(self.tempdir, 'config.json')
		with open(path,'w',encoding='utf-8') as f:
			json.dump({'output':'x.img','json_logs':True}, f)
		data = _load_config_file(path)
		self.assertTrue(data.get('json_logs'))
		self.assertEqual(data.get('output'), 'x.img')

	def test_load_yaml(self):
		path = os.path.join(self.tempdir, 'c.yml')
		with open(path,'w',encoding='utf-8') as f:
			f.write('output: y.img\nreport: md\n')
		data = _load_config_file(path)
		self.assertEqual(data.get('output'), 'y.img')
		self.assertEqual(data.get('report'), 'md')

	def test_invalid_files_raise(self):
		bad_json = os.path.join(self.tempdir, 'bad.json')
		with open(bad_json,'w',encoding='utf-8') as f: f.write('{not json')
		bad_yaml = os.path.join(self.tempdir, 'bad.yaml')
		with open(bad_yaml,'w',encoding='utf-8') as f: f.write('a: [1, 2\n')
		not_map = os.path.join(self.tempdir, 'list.json')
		with open(not_map,'w',encoding='utf-8') as f: f.write('[1, 2]')
		for p in (bad_json, bad_yaml, not_map, os.path.join(self.tempdir, 'absent.json')):
			with self.assertRaises(ConfigError):
				_load_config_file(p)

	def test_config_supplies_defaults_cli_wins(self):
		mpath = write_split(self.tempdir, os.urandom(2000))
		cfg_out = os.path.join(self.tempdir, 'from_config.img')
		cli_out = os.path.join(self.tempdir, 'from_cli.img')
		path = os.path.join(self.tempdir, 'c.yaml')
		with open(path,'w',encoding='utf-8') as f:
			f.write(f'manifest: {mpath}\noutput: {cfg_out}\n')
		self.assertEqual(headless_main(['--config', path]), 0)
		self.assertTrue(os.path.exists(cfg_out))
		self.assertEqual(headless_main([mpath, cli_out, '--config', path]), 0)
		self.assertTrue(os.path.exists(cli_out))

	def test_bad_config_exit_code(self):
		path = os.path.join(self.tempdir, 'bad.json')
		with open(path,'w',encoding='utf-8') as f: f.write('{')
		self.assertEqual(headless_main(['m.txt', '--config', path]), EXIT_CONFIG_ERROR)

	def test_bad_chunk_size_in_config(self):
		path = os.path.join(self.tempdir, 'c.json')
		with open(path,'w',encoding='utf-8') as f: json.dump({'chunk_size': 0}, f)
		self.assertEqual(headless_main(['m.txt', '--config', path]), EXIT_CONFIG_ERROR)

	def test_config_choices_are_validated(self):
		for key, bad in (('progress', 'fancy'), ('report', 'xml')):
			path = os.path.join(self.tempdir, f'{key}.json')
			with open(path,'w',encoding='utf-8') as f: json.dump({key: bad}, f)
			self.assertEqual(headless_main(['m.txt', '--config', path]), EXIT_CONFIG_ERROR)
		self.assertFalse(os.path.exists(os.path.join(self.tempdir, 'join_report.xml')))

	def test_config_valid_choice_accepted(self):
		mpath = write_split(self.tempdir, os.urandom(500))
		out = os.path.join(self.tempdir, 'o.img')
		path = os.path.join(self.tempdir, 'ok.yaml')
		with open(path,'w',encoding='utf-8') as f: f.write('report: json\n')
		self.assertEqual(headless_main([mpath, out, '--config', path]), 0)
		self.assertTrue(os.path.exists(os.path.join(self.tempdir, 'join_report.json')))

if __name__ == '__main__':
	unittest.main()
