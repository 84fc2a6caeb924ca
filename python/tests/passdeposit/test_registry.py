import os, pdb, json, tempfile
import unittest as test

import yaml

from passdeposit.exceptions import ConfigurationException, RepositoryNotFound
from passdeposit.registry import RepositoryConfigRegistry, RepositoryConfig, AuthRealm
from passdeposit.transport.http import SwordHttpBinding
from passdeposit.transport.ftp import FtpBinding
from passdeposit.transport.statement import AtomStatementResolver
from passdeposit.status import DepositStatus

tmpdir = tempfile.TemporaryDirectory(prefix="_test_registry.")

def tearDownModule():
    tmpdir.cleanup()

def make_repos():
    return {
        "RepoA": {
            "transport": {
                "protocol": "sword",
                "endpoint": "https://repo-a.example.org/swordv2/collection/1",
                "timeout": 30,
                "auth": [ { "host": "repo-a.example.org", "username": "depositor",
                            "password": "${REPOA_PASSWORD}" } ],
                "options": { "on_behalf_of": "pass" }
            },
            "assembler": {
                "spec": "http://purl.org/net/sword/package/SimpleZip",
                "options": { "archive": "zip", "compression": "none", "checksums": [] }
            }
        },
        "RepoB": {
            "transport": {
                "protocol": "FTP",
                "endpoint": "ftp://ftp.repo-b.example.org/incoming"
            },
            "assembler": {
                "options": { "archive": "tar", "compression": "gzip", "checksums": ["sha256"] }
            }
        }
    }

class TestRepositoryConfigRegistry(test.TestCase):

    def test_load_dict(self):
        reg = RepositoryConfigRegistry.load(make_repos(), { "REPOA_PASSWORD": "s3cr3t" })
        self.assertEqual(len(reg), 2)
        self.assertEqual(reg.keys(), frozenset(["RepoA", "RepoB"]))
        self.assertIn("RepoA", reg)
        self.assertNotIn("RepoC", reg)

        cfg = reg.get_config("RepoA")
        self.assertIsInstance(cfg, RepositoryConfig)
        self.assertEqual(cfg.key, "RepoA")
        self.assertEqual(cfg.transport.protocol, "sword")
        self.assertIsInstance(cfg.transport.binding, SwordHttpBinding)
        self.assertEqual(cfg.transport.endpoint, "https://repo-a.example.org/swordv2/collection/1")
        self.assertEqual(cfg.transport.timeout, 30.0)
        self.assertEqual(cfg.transport.options['on_behalf_of'], "pass")
        self.assertEqual(cfg.assembler.spec, "http://purl.org/net/sword/package/SimpleZip")
        self.assertEqual(cfg.assembler.options.archive, "zip")
        self.assertEqual(cfg.assembler.options.compression, "none")
        self.assertEqual(cfg.assembler.options.checksums, ())

        creds = cfg.transport.credentials_for(cfg.transport.endpoint)
        self.assertEqual(creds.username, "depositor")
        self.assertEqual(creds.password, "s3cr3t")
        self.assertNotIn("s3cr3t", repr(creds))
        self.assertIsNone(cfg.transport.credentials_for("https://elsewhere.example.org/"))

        cfg = reg.get_config("RepoB")
        self.assertEqual(cfg.transport.protocol, "ftp")
        self.assertIsInstance(cfg.transport.binding, FtpBinding)
        self.assertIsNone(cfg.transport.timeout)
        self.assertEqual(cfg.transport.auth, ())
        self.assertIsNone(cfg.assembler.spec)
        self.assertEqual(cfg.assembler.options.archive, "tar")
        self.assertEqual(cfg.assembler.options.compression, "gzip")
        self.assertEqual(cfg.assembler.options.checksums, ("sha256",))

    def test_not_found(self):
        reg = RepositoryConfigRegistry.load(make_repos(), {})
        with self.assertRaises(RepositoryNotFound) as cm:
            reg.get_config("RepoC")
        self.assertEqual(cm.exception.key, "RepoC")
        self.assertIsNone(reg.find_config("RepoC"))
        self.assertIsNotNone(reg.find_config("RepoB"))

    def test_unresolved_property(self):
        reg = RepositoryConfigRegistry.load(make_repos(), {})
        creds = reg.get_config("RepoA").transport.auth[0]
        self.assertEqual(creds.password, "${REPOA_PASSWORD}")

    def test_load_list(self):
        repos = make_repos()
        data = []
        for key, cfg in repos.items():
            cfg['key'] = key
            data.append(cfg)
        reg = RepositoryConfigRegistry.load({ "repositories": data }, {})
        self.assertEqual(reg.keys(), frozenset(["RepoA", "RepoB"]))

        data.append(dict(data[0]))
        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load(data, {})

        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load([ { "transport": data[0]['transport'] } ], {})

    def test_load_file(self):
        path = os.path.join(tmpdir.name, "repos.yml")
        with open(path, 'w') as fd:
            yaml.safe_dump({ "repositories": make_repos() }, fd)
        reg = RepositoryConfigRegistry.load(path, { "REPOA_PASSWORD": "pw" })
        self.assertEqual(len(reg), 2)
        self.assertEqual(reg.get_config("RepoA").transport.auth[0].password, "pw")

        path = os.path.join(tmpdir.name, "repos.json")
        with open(path, 'w') as fd:
            json.dump(make_repos(), fd)
        reg = RepositoryConfigRegistry.load(path)
        self.assertEqual(reg.get_config("RepoB").assembler.options.checksums, ("sha256",))

        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load(os.path.join(tmpdir.name, "missing.yml"))

    def test_alternate_property_names(self):
        reg = RepositoryConfigRegistry.load({
            "RepoD": {
                "transport-config": {
                    "protocol-binding": { "protocol": "swordv2" },
                    "endpoints": { "collection": "https://repo-d.example.org/col" },
                    "auth-realms": [ { "url": "https://repo-d.example.org/", "username": "me",
                                       "password": "pw", "realm": "Deposits" } ]
                },
                "assembler": { "specification": "urn:spec", "options": { "archive": "tar" } }
            }
        }, {})
        cfg = reg.get_config("RepoD")
        self.assertEqual(cfg.transport.protocol, "swordv2")
        self.assertEqual(cfg.transport.endpoint, "https://repo-d.example.org/col")
        self.assertEqual(cfg.assembler.spec, "urn:spec")
        self.assertEqual(cfg.assembler.options.spec, "urn:spec")
        self.assertEqual(cfg.transport.credentials_for(cfg.transport.endpoint).username, "me")
        self.assertIsNotNone(cfg.transport.credentials_for(cfg.transport.endpoint, "Deposits"))
        self.assertIsNone(cfg.transport.credentials_for(cfg.transport.endpoint, "Other"))

    def test_malformed(self):
        def load_with(key, transport=None, assembler=None):
            repos = make_repos()
            if transport:
                repos[key]['transport'].update(transport)
            if assembler:
                repos[key]['assembler'] = assembler
            return RepositoryConfigRegistry.load(repos, {})

        for bad in [ { "protocol": "gopher" }, { "protocol": None },
                     { "endpoint": "not a url" }, { "timeout": -1 }, { "timeout": "soon" },
                     { "auth": [ { "username": "nohost" } ] }, { "options": ["x"] } ]:
            with self.assertRaises(ConfigurationException, msg=str(bad)):
                load_with("RepoA", bad)

        with self.assertRaises(ConfigurationException):
            load_with("RepoB", assembler={ "options": { "archive": "zip", "compression": "gzip" } })
        with self.assertRaises(ConfigurationException):
            load_with("RepoB", assembler={ "options": { "checksums": ["crc32"] } })

        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load({ "RepoA": "sword" }, {})
        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load({ "RepoA": { "assembler": {} } }, {})
        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load("", {})

    def test_endpoint_checked_by_binding(self):
        repos = make_repos()
        repos['RepoB']['transport']['endpoint'] = "https://repo-b.example.org/in"
        with self.assertRaises(ConfigurationException) as cm:
            RepositoryConfigRegistry.load(repos, {})
        self.assertIn("RepoB", str(cm.exception))

        repos = make_repos()
        repos['RepoA']['transport']['endpoint'] = "ftp://repo-a.example.org/swordv2"
        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry.load(repos, {})

    def test_deposit_status(self):
        reg = RepositoryConfigRegistry.load(make_repos(), {})
        self.assertIsNone(reg.get_config("RepoA").status_resolver)

        repos = make_repos()
        repos['RepoA']['deposit_status'] = {
            "resolver": "atom-statement",
            "states": { "http://example.org/state/declined": "rejected" }
        }
        reg = RepositoryConfigRegistry.load(repos, {})
        resolver = reg.get_config("RepoA").status_resolver
        self.assertIsInstance(resolver, AtomStatementResolver)
        self.assertEqual(resolver.states["http://example.org/state/declined"], DepositStatus.REJECTED)
        self.assertEqual(resolver.states["http://dspace.org/state/archived"], DepositStatus.ACCEPTED)
        self.assertIsNone(reg.get_config("RepoB").status_resolver)

        for bad in [ "atom", { "resolver": "oai-pmh" },
                     { "states": { "http://example.org/state/x": "retrying" } },
                     { "states": { "http://example.org/state/x": "goober" } },
                     { "states": ["archived"] } ]:
            repos = make_repos()
            repos['RepoA']['deposit_status'] = bad
            with self.assertRaises(ConfigurationException, msg=str(bad)):
                RepositoryConfigRegistry.load(repos, {})

    def test_read_only(self):
        reg = RepositoryConfigRegistry.load(make_repos(), {})
        with self.assertRaises(TypeError):
            reg.get_config("RepoA").transport.options['on_behalf_of'] = "someone"
        with self.assertRaises(AttributeError):
            reg.get_config("RepoA").key = "RepoZ"

    def test_duplicate_configs(self):
        cfg = RepositoryConfigRegistry.load(make_repos(), {}).get_config("RepoA")
        with self.assertRaises(ConfigurationException):
            RepositoryConfigRegistry([cfg, cfg])

class TestAuthRealm(test.TestCase):

    def test_matches(self):
        realm = AuthRealm("Repo.Example.org", "me", "pw")
        self.assertTrue(realm.matches("https://repo.example.org/path"))
        self.assertTrue(realm.matches("https://REPO.example.org:8443/path", "any"))
        self.assertFalse(realm.matches("https://other.example.org/path"))

        realm = AuthRealm("repo.example.org", "me", "pw", "deposit")
        self.assertTrue(realm.matches("https://repo.example.org/"))
        self.assertTrue(realm.matches("https://repo.example.org/", "deposit"))
        self.assertFalse(realm.matches("https://repo.example.org/", "admin"))


if __name__ == '__main__':
    test.main()
