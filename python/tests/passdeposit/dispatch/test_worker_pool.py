import os, pdb, json, time, logging, tempfile
import unittest as test
from unittest import mock

from passdeposit.exceptions import ConfigurationException, StateException
from passdeposit.model import Submission, Deposit, CustodialFile, DEPOSIT
from passdeposit.status import DepositStatus
from passdeposit.store.inmem import InMemoryEntityStore
from passdeposit.registry import (RepositoryConfigRegistry, RepositoryConfig, TransportConfig,
                                  AssemblerConfig)
from passdeposit.package.options import AssemblerOptions
from passdeposit.transport import Receipt
from passdeposit.dispatch.messages import LocalMessageQueue
from passdeposit.dispatch.orchestrator import DispatchOrchestrator
from passdeposit.dispatch.pool import DispatchWorkerPool

tmpdir = tempfile.TemporaryDirectory(prefix="_test_worker_pool.")

def tearDownModule():
    tmpdir.cleanup()

def wait_for(cond, timeout=5.0):
    end = time.time() + timeout
    while time.time() < end:
        if cond():
            return True
        time.sleep(0.02)
    return cond()

class TestDispatchWorkerPool(test.TestCase):

    def setUp(self):
        files = [CustodialFile("paper.pdf", b"%PDF pretend", "application/pdf")]
        self.store = InMemoryEntityStore(
            [ Submission("sub1", files), Submission("sub2", files), Submission("sub3", files) ],
            [ Deposit("dep1", "sub1", "RepoA"), Deposit("dep2", "sub2", "RepoA"),
              Deposit("dep3", "sub3", "RepoA") ])

        self.binding = mock.Mock()
        def submit(pkg, tc, timeout=None):
            pkg.open().read()
            time.sleep(0.05)
            return Receipt("https://repo-a.example.org/edit/" + pkg.name, tc.protocol, 201)
        self.binding.submit.side_effect = submit
        self.binding.verify.return_value = None
        tc = TransportConfig("sword", self.binding, { "default": "https://repo-a.example.org/col" })
        registry = RepositoryConfigRegistry([
            RepositoryConfig("RepoA", tc, AssemblerConfig(None, AssemblerOptions("zip")))
        ])

        self.orch = DispatchOrchestrator(self.store, registry,
                                         { "assembler": { "tmpdir": tmpdir.name } })
        self.q = LocalMessageQueue()
        self.pool = DispatchWorkerPool(self.orch, self.q, { "workers": 3, "poll_timeout": 0.05 })

    def tearDown(self):
        self.pool.stop(timeout=2.0)
        self.q.close()

    def test_ctor(self):
        self.assertEqual(self.pool.nworkers, 3)
        self.assertEqual(self.pool.poll_timeout, 0.05)
        self.assertFalse(self.pool.running)

        with self.assertRaises(ConfigurationException):
            DispatchWorkerPool(self.orch, self.q, { "workers": 0 })
        with self.assertRaises(ConfigurationException):
            DispatchWorkerPool(self.orch, self.q, { "workers": "many" })

    def test_process(self):
        for id in ["dep1", "dep2", "dep3"]:
            self.q.publish(json.dumps({ "type": "deposit", "id": id }))

        self.pool.start()
        self.assertTrue(self.pool.running)
        with self.assertRaises(StateException):
            self.pool.start()

        self.assertTrue(wait_for(lambda: self.pool.processed == 3))
        self.pool.stop(timeout=2.0)
        self.assertFalse(self.pool.running)

        self.assertEqual(self.pool.processed, 3)
        self.assertEqual(self.pool.outcomes, { "accepted": 3 })
        self.assertEqual(self.binding.submit.call_count, 3)
        for id in ["dep1", "dep2", "dep3"]:
            self.assertEqual(self.store.get_object(DEPOSIT, id).status, DepositStatus.ACCEPTED)

    def test_duplicate_messages(self):
        for i in range(4):
            self.q.publish(json.dumps({ "type": "deposit", "id": "dep1" }))
        self.pool.start()

        self.assertTrue(wait_for(lambda: len(self.q.acked) == 4))
        self.assertEqual(self.binding.submit.call_count, 1)
        self.assertEqual(self.store.get_object(DEPOSIT, "dep1").status, DepositStatus.ACCEPTED)
        self.assertTrue(wait_for(lambda: self.pool.processed >= 4))
        self.assertEqual(self.pool.outcomes.get("accepted"), 1)

    def test_restart(self):
        self.pool.start()
        self.pool.stop(timeout=2.0)
        self.assertFalse(self.pool.running)
        self.assertTrue(self.orch.cancelled())

        self.q.publish(json.dumps({ "type": "deposit", "id": "dep2" }))
        self.pool.start()
        self.assertFalse(self.orch.cancelled())
        self.assertTrue(wait_for(lambda: len(self.q.acked) == 1))

    def test_source_failure(self):
        source = mock.Mock()
        source.get.side_effect = OSError("broker unavailable")
        pool = DispatchWorkerPool(self.orch, source, { "workers": 1, "poll_timeout": 0.05 })
        pool.start()
        self.assertTrue(wait_for(lambda: source.get.call_count >= 2))
        pool.stop(timeout=2.0)
        self.assertFalse(pool.running)
        self.assertEqual(pool.processed, 0)


if __name__ == '__main__':
    test.main()
