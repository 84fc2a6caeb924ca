import os, pdb, logging
import unittest as test

from passdeposit.utils.logging import logged, blab, BLAB

class ListHandler(logging.Handler):
    def __init__(self):
        super(ListHandler, self).__init__(logging.NOTSET)
        self.records = []
    def emit(self, record):
        self.records.append(record)

class TestLogged(test.TestCase):

    def setUp(self):
        self.log = logging.getLogger("Deposit.test.logged")
        self.log.setLevel(BLAB)
        self.hdlr = ListHandler()
        self.log.addHandler(self.hdlr)

    def tearDown(self):
        self.log.removeHandler(self.hdlr)

    def messages(self):
        return [r.getMessage() for r in self.hdlr.records]

    def test_success(self):
        wrapped = logged(self.log, "deposit", deposit="dep1", repository="RepoA")(lambda x: x * 2)
        self.assertEqual(wrapped(4), 8)
        msgs = self.messages()
        self.assertEqual(len(msgs), 2)
        self.assertTrue(msgs[0].startswith("Starting deposit"))
        self.assertIn("deposit=dep1", msgs[0])
        self.assertIn("repository=RepoA", msgs[0])
        self.assertTrue(msgs[1].startswith("Completed deposit"))

    def test_failure(self):
        def boom():
            raise RuntimeError("kaboom")
        wrapped = logged(self.log, "deposit", deposit="dep1", protocol=None)(boom)
        with self.assertRaises(RuntimeError):
            wrapped()
        msgs = self.messages()
        self.assertEqual(len(msgs), 2)
        self.assertIn("kaboom", msgs[1])
        self.assertEqual(self.hdlr.records[1].levelno, logging.WARNING)
        self.assertNotIn("protocol", msgs[0])

    def test_blab(self):
        blab(self.log, "entry: %s", "a.txt")
        self.assertEqual(self.hdlr.records[0].levelno, BLAB)
        self.assertEqual(self.messages(), ["entry: a.txt"])


if __name__ == '__main__':
    test.main()
