# ubox

Small building blocks for tools that exchange structured data:

- `ubox.avl`: an ordered AVL tree (`AvlTree`) with optional duplicate keys,
  range lookups (`find`, `find_lessequal`, `find_greaterequal`, `lookup` with
  a `FindMode`) and in-order iteration in both directions (`iter_range`,
  `iter_range_reverse`, `reversed()`). `strcmp` and `blobcmp` are ready-made
  comparators.
- `ubox.blob`: a builder (`BlobBuf`) and reader (`BlobAttr`) for tagged,
  length-prefixed, 4-byte aligned binary attributes. It supports nesting
  (`nest_start` / `nest_end`) and parsing against a policy (`parse`,
  `parse_untrusted`, `BlobAttrInfo`).
- `ubox.blobmsg`: named attributes on top of blobs. It handles tables, arrays,
  strings, integers, booleans and doubles (`BlobmsgBuf`, `parse`,
  `parse_array`, `check_array`, `get_*` and `cast_*` readers).
- `ubox.blobmsg_json`: converts JSON to blobmsg (`add_json_from_string`,
  `add_json_from_file`, `add_object`, `add_json_element`) and formats blobmsg
  back to JSON (`format_json`, `format_json_value`), compact or indented with
  tabs.
- `ubox.kvlist`: a key/value store kept in name order (`KvList`) that holds
  copies of its values.
- `ubox.jshn`: converts JSON to shell commands and back (`parse_to_shell`,
  `parse_file_to_shell`, `format_from_env`). It also provides the `jshn`
  command.

## Installation

```
pip install .
```

## Building a message

```python
from ubox.blobmsg import BlobmsgBuf
from ubox.blobmsg_json import format_json

buf = BlobmsgBuf()
buf.add_string("name", "eth0")
buf.add_u32("mtu", 1500)
cookie = buf.open_array("addresses")
buf.add_string(None, "192.0.2.1")
buf.close_array(cookie)

print(format_json(buf.head, True))
# {"name":"eth0","mtu":1500,"addresses":["192.0.2.1"]}
```

Pass `indent=0` or higher for tab-indented output. You can also pass a
`callback` that returns the text for a value, or `None` to fall back to the
default formatting.

## A sorted tree

```python
from ubox.avl import AvlTree

tree = AvlTree()
for word in ("pear", "apple", "fig"):
    tree.insert(word, len(word))

print([node.key for node in tree])            # ['apple', 'fig', 'pear']
print(tree.find_greaterequal("b").key)        # 'fig'
```

When duplicates are not allowed, `insert` raises `KeyError` for a key that is
already present.

## JSON from shell scripts: `jshn`

`jshn` prints shell commands (`json_init;`, `json_add_string 'key' 'value';`
and so on) that rebuild a JSON object. It can also build JSON back from the
`J_V`, `K_*`, `T_*` and `N_*` environment variables that those commands set.

```
jshn -r '{"a": 1, "b": "x"}'
jshn -R input.json
jshn -w            # write JSON built from the environment to stdout
jshn -i -w         # the same, indented
jshn -n -o out.json
jshn -p PREFIX_ -w
```

The options are:

- `-r` parses a message.
- `-R` parses a file.
- `-w` writes to stdout.
- `-o` writes to a file.
- `-p` sets a prefix for variable names.
- `-n` omits the trailing newline.
- `-i` indents the output.

An unreadable message exits with status 1 and an unopenable file with
status 3. A missing action prints the usage text and exits with status 2.

## What is not included

The package has no rule or script interpreter driven by JSON. It has no
command that runs such scripts, and it has no base64 codec. Variable
substitution and command dispatch over blobmsg data are left to the caller.

## Tests

```
pip install .[test]
pytest
```