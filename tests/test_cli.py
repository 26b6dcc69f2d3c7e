import json
import pathlib

import attr

from kmscreds import __version__
from kmscreds.store import Store

from .conftest import CONTEXT, KEY_ID


def test_version(invoke):
    assert invoke(['version']) == [f"kmscreds {__version__}"]


def test_init(invoke, initialised):
    store = Store.load(initialised)
    assert store.kms_key_id == KEY_ID
    assert store.encryption_context == CONTEXT
    assert store.credentials == []


def test_init_context_values(invoke):
    invoke(['init', '--path', 'other.json', '--kms-key-id', KEY_ID,
            '--encryption-context', 'APP=web',
            '--encryption-context', 'ENV=a=b'])
    data = json.loads(pathlib.Path('other.json').read_text())
    assert data['encryption_context'] == {'APP': 'web', 'ENV': 'a=b'}


def test_init_existing(invoke, initialised):
    output = invoke(['init', '--kms-key-id', KEY_ID], fail=True)
    assert any('already exists' in line for line in output)


def test_add(invoke, initialised, kms):
    output = invoke(['add', 'my_cred', '--description', 'Some description.'],
                    input='abcdef\n')
    assert output[0] == "KMS: Encrypting plaintext for my_cred"

    store = Store.load(initialised)
    assert [c.name for c in store] == ['my_cred']
    assert store.credentials[0].description == 'Some description.'
    assert store.decrypt(kms, 'my_cred') == 'abcdef'


def test_add_duplicate(invoke, initialised):
    invoke(['add', 'my_cred'], input='abcdef')
    output = invoke(['add', 'my_cred'], input='ghijklm', fail=True)
    assert any('Use the `rotate` command' in line for line in output)
    assert len(Store.load(initialised)) == 1


def test_add_invalid_name(invoke, initialised):
    invoke(['add', 'My-Cred'], input='abcdef', fail=True)
    assert len(Store.load(initialised)) == 0


def test_add_empty_plaintext(invoke, initialised):
    invoke(['add', 'my_cred'], input='', fail=True)
    assert len(Store.load(initialised)) == 0


def test_add_without_file(invoke):
    output = invoke(['add', 'my_cred'], input='abcdef', fail=True)
    assert any("'init'" in line for line in output)


def test_rotate(invoke, initialised, kms):
    invoke(['add', 'my_cred'], input='abcdef')
    invoke(['rotate', 'my_cred'], input='ghijklm')

    credential = Store.load(initialised).find('my_cred')
    assert credential.rotated_at is not None
    assert Store.load(initialised).decrypt(kms, 'my_cred') == 'ghijklm'


def test_rotate_unchanged(invoke, initialised):
    invoke(['add', 'my_cred'], input='abcdef')
    output = invoke(['rotate', 'my_cred'], input='abcdef', fail=True)
    assert any('No changes' in line for line in output)
    assert Store.load(initialised).find('my_cred').rotated_at is None


def test_rotate_undecryptable(invoke, initialised, kms):
    invoke(['add', 'my_cred'], input='abcdef')
    store = Store.load(initialised)
    store.credentials[0] = attr.evolve(store.credentials[0], ciphertext='EJK1];broken')
    store.save(initialised)

    output = invoke(['rotate', 'my_cred'], input='ghijklm')
    assert any('could not be decrypted' in line for line in output)

    credential = Store.load(initialised).find('my_cred')
    assert credential.rotated_at is not None
    assert Store.load(initialised).decrypt(kms, 'my_cred') == 'ghijklm'


def test_add_from_file(invoke, initialised, kms):
    pathlib.Path('secret.txt').write_text('from a file\n')
    invoke(['add', 'my_cred', '--input', 'secret.txt'])
    assert Store.load(initialised).decrypt(kms, 'my_cred') == 'from a file'


def test_rotate_missing(invoke, initialised):
    output = invoke(['rotate', 'my_cred'], input='abcdef', fail=True)
    assert any('No credential named my_cred' in line for line in output)


def test_edit_description(invoke, initialised):
    invoke(['add', 'my_cred', '--description', 'Old'], input='abcdef')
    invoke(['edit-description', 'my_cred', 'New'])
    assert Store.load(initialised).find('my_cred').description == 'New'


def test_delete(invoke, initialised):
    invoke(['add', 'my_cred'], input='abcdef')
    invoke(['add', 'my_other_cred'], input='ghijklm')
    invoke(['delete', 'my_cred', '--yes'])
    assert [c.name for c in Store.load(initialised)] == ['my_other_cred']


def test_list(invoke, initialised):
    assert invoke(['list']) == ["No credentials in .credentials.json"]

    invoke(['add', 'my_cred', '--description', 'Some description.'], input='abcdef')
    output = invoke(['list'])
    assert len(output) == 1
    assert output[0].startswith('my_cred: Some description. (added ')


def test_export(invoke, initialised):
    invoke(['add', 'my_cred'], input='abcdef')
    invoke(['add', 'my_other_cred'], input='ghijklm')

    assert invoke(['export']) == [
        "export MY_CRED='abcdef'",
        "export MY_OTHER_CRED='ghijklm'",
    ]
    assert invoke(['export', '--format', 'dotenv']) == [
        'MY_CRED="abcdef"',
        'MY_OTHER_CRED="ghijklm"',
    ]
    assert json.loads('\n'.join(invoke(['export', '-f', 'json']))) == {
        'my_cred': 'abcdef',
        'my_other_cred': 'ghijklm',
    }


def test_export_fails(invoke, initialised, kms):
    invoke(['add', 'my_cred'], input='abcdef')
    kms.error = "testing error"
    output = invoke(['export'], fail=True)
    assert any('Unable to decrypt credential my_cred' in line for line in output)
    assert not any(line.startswith('export ') for line in output)
