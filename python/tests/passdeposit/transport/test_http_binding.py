import os, pdb, io, hashlib
import unittest as test
from unittest import mock

import requests
from urllib3.exceptions import ProtocolError

from passdeposit.exceptions import ConfigurationException, AttemptCancelled
from passdeposit.package.assembler import PackageStream, InterruptibleReader
from passdeposit.registry import TransportConfig, AuthRealm
from passdeposit.transport import (binding_for, TransportError, Receipt, AUTH_FAILURE,
                                   CONNECTION_FAILURE, REMOTE_REJECTED, TIMEOUT, UNKNOWN_OUTCOME)
from passdeposit.transport.http import SwordHttpBinding

COLLECTION = "https://repo-a.example.org/swordv2/collection/1"
CONTENT = b"PK pretend zip content"

def make_package(cancelled=None):
    return PackageStream(io.BytesIO(CONTENT), "sub1.zip", "application/zip", len(CONTENT),
                         "http://purl.org/net/sword/package/SimpleZip",
                         { "md5": hashlib.md5(CONTENT).hexdigest() }, cancelled=cancelled)

def make_response(status, reason="OK", text="", headers=None):
    resp = mock.Mock()
    resp.status_code = status
    resp.reason = reason
    resp.text = text
    resp.headers = headers or {}
    return resp

class TestSwordHttpBinding(test.TestCase):

    def setUp(self):
        self.binding = SwordHttpBinding()
        self.tc = TransportConfig("sword", self.binding, { "default": COLLECTION },
                                  [ AuthRealm("repo-a.example.org", "depositor", "secret"),
                                    AuthRealm("other.example.org", "nobody", "nothing") ],
                                  { "on_behalf_of": "pass", "headers": { "X-Extra": "yes" } },
                                  30)

    def test_selectors(self):
        self.assertIsInstance(binding_for("sword"), SwordHttpBinding)
        self.assertIsInstance(binding_for("HTTP"), SwordHttpBinding)
        self.assertIsInstance(binding_for("SWORDv2"), SwordHttpBinding)

    def test_submit(self):
        pkg = make_package()
        resp = make_response(201, "Created", "<entry/>",
                             { "Location": "https://repo-a.example.org/swordv2/edit/42" })
        with mock.patch('passdeposit.transport.http.requests.post', return_value=resp) as post:
            receipt = self.binding.submit(pkg, self.tc)

        self.assertIsInstance(receipt, Receipt)
        self.assertEqual(receipt.location, "https://repo-a.example.org/swordv2/edit/42")
        self.assertEqual(receipt.protocol, "sword")
        self.assertEqual(receipt.status_code, 201)
        self.assertTrue(pkg.consumed)

        self.assertEqual(post.call_count, 1)
        args, kw = post.call_args
        self.assertEqual(args[0], COLLECTION)
        self.assertEqual(kw['auth'], ("depositor", "secret"))
        self.assertEqual(kw['timeout'], 30)
        hdrs = kw['headers']
        self.assertEqual(hdrs['Content-Type'], "application/zip")
        self.assertEqual(hdrs['Content-Disposition'], "attachment; filename=sub1.zip")
        self.assertEqual(hdrs['Content-MD5'], hashlib.md5(CONTENT).hexdigest())
        self.assertEqual(hdrs['Packaging'], "http://purl.org/net/sword/package/SimpleZip")
        self.assertEqual(hdrs['In-Progress'], "false")
        self.assertEqual(hdrs['On-Behalf-Of'], "pass")
        self.assertEqual(hdrs['X-Extra'], "yes")

    def test_submit_explicit_timeout_no_location(self):
        resp = make_response(200)
        with mock.patch('passdeposit.transport.http.requests.post', return_value=resp) as post:
            receipt = self.binding.submit(make_package(), self.tc, 5)
        self.assertEqual(receipt.location, COLLECTION)
        self.assertEqual(post.call_args[1]['timeout'], 5)

    def test_no_credentials(self):
        tc = TransportConfig("sword", self.binding, { "default": COLLECTION })
        with mock.patch('passdeposit.transport.http.requests.post',
                        return_value=make_response(201)) as post:
            self.binding.submit(make_package(), tc)
        self.assertNotIn('auth', post.call_args[1])
        self.assertTrue(post.call_args[1]['timeout'])

    def assertTransportError(self, kind, **patchkw):
        with mock.patch('passdeposit.transport.http.requests.post', **patchkw):
            with self.assertRaises(TransportError) as cm:
                self.binding.submit(make_package(), self.tc)
        self.assertEqual(cm.exception.kind, kind)
        self.assertEqual(cm.exception.protocol, "sword")
        self.assertEqual(cm.exception.endpoint, COLLECTION)
        return cm.exception

    def test_auth_failure(self):
        ex = self.assertTransportError(AUTH_FAILURE, return_value=make_response(401, "Unauthorized"))
        self.assertFalse(ex.retryable)
        self.assertTransportError(AUTH_FAILURE, return_value=make_response(403, "Forbidden"))

    def test_rejected(self):
        ex = self.assertTransportError(REMOTE_REJECTED,
                                       return_value=make_response(415, "Unsupported Media Type",
                                                                  "<error>bad package</error>"))
        self.assertEqual(ex.response, "<error>bad package</error>")
        self.assertFalse(ex.retryable)
        self.assertTransportError(REMOTE_REJECTED, return_value=make_response(500, "Server Error"))

    def test_connect_timeout(self):
        ex = self.assertTransportError(TIMEOUT,
                                       side_effect=requests.exceptions.ConnectTimeout("too slow"))
        self.assertTrue(ex.retryable)

    def test_connection_refused(self):
        ex = self.assertTransportError(CONNECTION_FAILURE,
                                       side_effect=requests.exceptions.ConnectionError("refused"))
        self.assertTrue(ex.retryable)

    def test_unknown_outcome(self):
        ex = self.assertTransportError(UNKNOWN_OUTCOME,
                                       side_effect=requests.exceptions.ReadTimeout("no answer"))
        self.assertTrue(ex.retryable)

        dropped = requests.exceptions.ConnectionError(
            ProtocolError("Connection aborted.", ConnectionResetError("reset by peer")))
        self.assertTransportError(UNKNOWN_OUTCOME, side_effect=dropped)

    def test_verify(self):
        self.assertIsNone(self.binding.verify("sub1.zip", self.tc))

    def test_receipt_statement_link(self):
        text = RECEIPT % "http://purl.org/net/sword/terms/statement"
        resp = make_response(201, "Created", text,
                             { "Location": "https://repo-a.example.org/swordv2/edit/42" })
        with mock.patch('passdeposit.transport.http.requests.post', return_value=resp):
            receipt = self.binding.submit(make_package(), self.tc)
        self.assertEqual(receipt.status_ref, "https://repo-a.example.org/swordv2/statement/42.atom")
        self.assertEqual(receipt.details, text)

        resp.text = RECEIPT % "alternate"
        with mock.patch('passdeposit.transport.http.requests.post', return_value=resp):
            receipt = self.binding.submit(make_package(), self.tc)
        self.assertIsNone(receipt.status_ref)

    def test_check_config(self):
        self.binding.check_config(self.tc)
        self.binding.check_config(TransportConfig("sword", self.binding,
                                                  { "default": "http://repo.example.org:8080/col" }))
        for url in [ "ftp://repo-a.example.org/swordv2", "https:///swordv2/collection/1" ]:
            with self.assertRaises(ConfigurationException, msg=url):
                self.binding.check_config(TransportConfig("sword", self.binding,
                                                          { "default": url }))

    def test_interrupted_transmission(self):
        def post(url, data=None, **kw):
            self.assertIsInstance(data, InterruptibleReader)
            self.assertEqual(data.len, len(CONTENT))
            data.read(8192)
            return make_response(201)

        pkg = make_package(lambda: True)
        with mock.patch('passdeposit.transport.http.requests.post', side_effect=post):
            with self.assertRaises(AttemptCancelled):
                self.binding.submit(pkg, self.tc)
        self.assertTrue(pkg.consumed)

        # not cancelled: the whole package is sent
        sent = []
        def post(url, data=None, **kw):
            sent.append(data.read())
            return make_response(201)
        with mock.patch('passdeposit.transport.http.requests.post', side_effect=post):
            self.binding.submit(make_package(lambda: False), self.tc)
        self.assertEqual(sent, [CONTENT])

RECEIPT = """<?xml version="1.0" encoding="utf-8"?>
<entry xmlns="http://www.w3.org/2005/Atom">
  <id>https://repo-a.example.org/swordv2/edit/42</id>
  <link rel="edit" href="https://repo-a.example.org/swordv2/edit/42"/>
  <link rel="%s" type="application/atom+xml;type=feed"
        href="https://repo-a.example.org/swordv2/statement/42.atom"/>
</entry>
"""


if __name__ == '__main__':
    test.main()
