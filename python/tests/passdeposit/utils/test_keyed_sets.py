import os, pdb, threading
import unittest as test

from passdeposit.utils.cache import KeyedSets

class TestKeyedSets(test.TestCase):

    def setUp(self):
        self.ks = KeyedSets()

    def test_add_get(self):
        self.assertIsNone(self.ks.get("user1"))
        self.ks.add("user1", "sub1")
        self.ks.add("user1", "sub2")
        self.ks.add("user1", "sub1")
        self.assertEqual(self.ks.get("user1"), set(["sub1", "sub2"]))
        self.assertEqual(self.ks.size(), 1)
        self.assertEqual(len(self.ks), 1)

        # returned sets are copies
        self.ks.get("user1").add("sub3")
        self.assertEqual(self.ks.get("user1"), set(["sub1", "sub2"]))

    def test_add_if_absent(self):
        self.assertTrue(self.ks.add_if_absent("deposit", "d1"))
        self.assertFalse(self.ks.add_if_absent("deposit", "d1"))
        self.assertTrue(self.ks.add_if_absent("submission", "d1"))
        self.assertTrue(self.ks.contains("deposit", "d1"))
        self.assertFalse(self.ks.contains("deposit", "d2"))
        self.assertEqual(self.ks.keys(), set(["deposit", "submission"]))

    def test_put_remove(self):
        self.ks.put("a", ["x", "y"])
        self.ks.put("b", ["z"])
        self.assertEqual(self.ks.get("a"), set(["x", "y"]))
        self.ks.put("a", ["w"])
        self.assertEqual(self.ks.get("a"), set(["w"]))

        self.ks.remove("a")
        self.assertIsNone(self.ks.get("a"))
        self.assertEqual(self.ks.size(), 1)
        self.ks.remove("goob")

        self.ks.clear()
        self.assertEqual(self.ks.size(), 0)

    def test_discard(self):
        self.ks.put("a", ["x", "y"])
        self.ks.discard("a", "x")
        self.assertEqual(self.ks.get("a"), set(["y"]))
        self.ks.discard("a", "y")
        self.assertIsNone(self.ks.get("a"))
        self.assertEqual(self.ks.size(), 0)
        self.ks.discard("a", "y")

    def test_concurrent_add_if_absent(self):
        winners = []
        start = threading.Event()

        def contend():
            start.wait()
            if self.ks.add_if_absent("deposit", "d1"):
                winners.append(threading.current_thread().name)

        threads = [threading.Thread(target=contend) for i in range(8)]
        for t in threads:
            t.start()
        start.set()
        for t in threads:
            t.join()
        self.assertEqual(len(winners), 1)


if __name__ == '__main__':
    test.main()
