import os, json, pdb, logging, tempfile
import unittest as test

from passdeposit import config
from passdeposit.exceptions import ConfigurationException

tmpdir = tempfile.TemporaryDirectory(prefix="_test_config.")

def tearDownModule():
    for hdlr in list(config._log_handlers.values()):
        logging.getLogger().removeHandler(hdlr)
        hdlr.close()
    config._log_handlers.clear()
    tmpdir.cleanup()

class TestLoadFromFile(test.TestCase):

    def test_yaml(self):
        cfgfile = os.path.join(tmpdir.name, "conf.yml")
        with open(cfgfile, 'w') as fd:
            fd.write("max_attempts: 5\nassembler:\n  spool_size: 1024\n")
        data = config.load_from_file(cfgfile)
        self.assertEqual(data, { "max_attempts": 5, "assembler": { "spool_size": 1024 } })

    def test_json(self):
        cfgfile = os.path.join(tmpdir.name, "conf.json")
        with open(cfgfile, 'w') as fd:
            json.dump({ "workers": 2 }, fd)
        self.assertEqual(config.load_from_file(cfgfile), { "workers": 2 })

    def test_empty(self):
        cfgfile = os.path.join(tmpdir.name, "empty.yaml")
        with open(cfgfile, 'w') as fd:
            pass
        self.assertEqual(config.load_from_file(cfgfile), {})

    def test_errors(self):
        with self.assertRaises(ConfigurationException):
            config.load_from_file(os.path.join(tmpdir.name, "missing.yml"))

        cfgfile = os.path.join(tmpdir.name, "bad.json")
        with open(cfgfile, 'w') as fd:
            fd.write("{ goob")
        with self.assertRaises(ConfigurationException):
            config.load_from_file(cfgfile)

        cfgfile = os.path.join(tmpdir.name, "list.yml")
        with open(cfgfile, 'w') as fd:
            fd.write("- a\n- b\n")
        with self.assertRaises(ConfigurationException):
            config.load_from_file(cfgfile)

        cfgfile = os.path.join(tmpdir.name, "conf.txt")
        with open(cfgfile, 'w') as fd:
            fd.write("a = b\n")
        with self.assertRaises(ConfigurationException):
            config.load_from_file(cfgfile)

class TestMergeConfig(test.TestCase):

    def test_merge(self):
        defc = { "a": 1, "b": { "c": 2, "d": 3 }, "e": [1, 2] }
        over = { "b": { "d": 4, "f": 5 }, "e": [3], "g": "x" }
        out = config.merge_config(over, defc)
        self.assertEqual(out, { "a": 1, "b": { "c": 2, "d": 4, "f": 5 }, "e": [3], "g": "x" })

        # inputs untouched
        self.assertEqual(defc, { "a": 1, "b": { "c": 2, "d": 3 }, "e": [1, 2] })
        self.assertEqual(over, { "b": { "d": 4, "f": 5 }, "e": [3], "g": "x" })

    def test_none(self):
        self.assertEqual(config.merge_config(None, { "a": 1 }), { "a": 1 })
        self.assertEqual(config.merge_config({ "a": 1 }, None), { "a": 1 })

class TestConfigureLog(test.TestCase):

    def test_logfile(self):
        logfile = "deposit.log"
        root = config.configure_log(logfile, config={ 'logdir': tmpdir.name, 'loglevel': "DEBUG" })
        path = os.path.join(tmpdir.name, logfile)
        self.assertIn(os.path.abspath(path), config._log_handlers)
        self.assertLessEqual(root.level, logging.DEBUG)

        nhdlrs = len(root.handlers)
        config.configure_log(logfile, config={ 'logdir': tmpdir.name })
        self.assertEqual(len(root.handlers), nhdlrs)

        logging.getLogger("Deposit.test").info("hello from the test")
        config._log_handlers[os.path.abspath(path)].flush()
        with open(path) as fd:
            self.assertIn("hello from the test", fd.read())

    def test_bad_level(self):
        with self.assertRaises(ConfigurationException):
            config.configure_log(os.path.join(tmpdir.name, "x.log"), level="GOOBER")


if __name__ == '__main__':
    test.main()
