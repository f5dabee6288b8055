# hauler

An airgap toolkit for working with a local OCI content store. The store is
an OCI image layout on disk (`oci-layout`, `index.json`, `blobs/`). hauler
lists what it holds, saves it to a single archive, loads archives into
another store, extracts artifacts to plain files, copies the content to a
directory or a registry, and serves it over HTTP.

## Installation

```
pip install .
```

This installs the `hauler` command. It needs `zstandard` and `tabulate`.

## Usage

```
hauler --help
hauler --log-level debug store info
hauler version
hauler version --json
```

`-l/--log-level` sets the logging level (default `info`).

### The content store

Every store command works on the directory given by `-s/--store` (default
`store`), which is created if it does not exist. `--cache` is accepted but
not used.

```
# list what is in the store: a table, or JSON, optionally filtered by type
# (image | chart | file | sigs | atts | sbom | all)
hauler store info
hauler store info --output json --type chart
hauler store info --list-repos

# save the store to a zstd-compressed tar archive (default haul.tar.zst)
hauler store save --filename haul.tar.zst
hauler store save --platform linux/amd64

# load one or more archives into the store, keeping what it already holds
hauler store load haul.tar.zst
hauler store load --tempdir /var/tmp haul.tar.zst

# extract an artifact from the store to disk (default: current directory)
hauler store extract hauler/my-file.txt:latest --output ./out

# copy all store content to a directory or to a registry
hauler store copy dir://./mirror
hauler store copy registry://localhost:5000 --plain-http
hauler store copy registry://registry.example.com -u user -p password
```

`store info`, `list` and `ls` are aliases of `store info`; `store x` of
`store extract`; `s` of `store`.

Before archiving, `store save` writes a `manifest.json` into the store that
lists its images (with `RepoTags`, config and layer paths) for a container
runtime import. With `--platform`, images of a multi-platform index that do
not match are left out of it; `unknown/unknown` entries are always left out.

`store load` reads `.zst`/`.zstd`/`.tzst` archives as zstd-compressed tar,
and anything else as tar with whatever compression `tarfile` detects.

Copying to a registry pushes each named entry of the store over the
registry HTTP API; `--insecure` skips TLS certificate checks and
`--plain-http` uses HTTP instead of HTTPS.

### Serving

```
# serve the store's files over HTTP
hauler store serve fileserver --port 8080 --directory fileserver --timeout 60

# serve the store as a read-only registry
hauler store serve registry --port 5000 --directory registry
```

The file server copies the store's content as files into `--directory` and
serves that directory. The registry server copies the store into
`--directory` as an OCI layout and answers `GET`/`HEAD` requests for
`/v2/`, manifests and blobs; every write request gets `405`. With
`-c/--config` it reads its configuration from a JSON file shaped like
`ServeRegistryOpts.default_registry_config()` instead of from the flags.

For both, `--tls-cert` and `--tls-key` must be given together to serve over
TLS.

### Shell completion

```
hauler completion bash
hauler completion zsh
hauler completion fish
hauler completion powershell
```

## Library use

- `hauler.oci.Layout` opens or creates a store directory; it has `walk()`,
  `fetch()`, `add_blob()`, `add_to_index()`, `copy()` and `copy_all()`.
- `hauler.info.info_cmd`, `hauler.save.save_cmd`,
  `hauler.save.write_exports_manifest`, `hauler.transfer.load_cmd`,
  `hauler.transfer.copy_cmd` and `hauler.extract.extract_cmd` run the
  store commands, taking the option dataclasses from `hauler.flags`.
- `hauler.mapper.MapperFileStore` writes blobs as named files;
  `hauler.mapper.from_manifest` picks the file names for image or chart
  content.
- `hauler.version.get_version_info()` returns the version information.

## What it does not do

hauler works only with content already in a store or in a store archive.
It has no commands to add images, charts or files to a store, to sync a
store from content manifests, or to log in to a registry, and it does not
verify image signatures.