"""
kmscreds manages a file of credentials encrypted with AWS KMS.

Each credential is encrypted with its own data key, generated by KMS under a
single master key. The file only ever contains ciphertext, so it can be
committed alongside the code that uses it.

Create a new credentials file:

\b
    $ kmscreds init --kms-key-id "alias/my-key" --encryption-context "APP=web"

Add a credential, reading its value from stdin:

\b
    $ echo "hunter2" | kmscreds add "database_password" --description "Primary DB"

Replace the value of an existing credential:

\b
    $ echo "correct horse" | kmscreds rotate "database_password"

Decrypt all credentials into the environment:

\b
    $ eval "$(kmscreds export --format bash)"
"""

__version__ = '1.0.0'
