import pytest

from px4_ulog import (
    ArrayType,
    NamedType,
    Primitive,
    PrimitiveType,
    SchemaError,
    expand_arrays,
    parse_type_spec,
    resolve_formats,
    strip_padding,
    type_width,
    walk_messages,
)


def _resolve(builder, *formats):
    for text in formats:
        builder.format(text)
    return resolve_formats(walk_messages(builder.build()).formats)


def test_type_width():
    assert type_width('bool') == 1
    assert type_width('char') == 1
    assert type_width('int8_t') == 1
    assert type_width('uint16_t') == 2
    assert type_width('int32_t') == 4
    assert type_width('float') == 4
    assert type_width('uint64_t') == 8
    assert type_width('double') == 8

    # bare aliases
    assert type_width('uint8') == 1
    assert type_width('int64') == 8

    assert type_width('vehicle_attitude') is None


def test_parse_type_spec():
    assert parse_type_spec('float') == PrimitiveType(Primitive.FLOAT)
    assert parse_type_spec(' uint8_t ') == PrimitiveType(Primitive.UINT8)
    assert parse_type_spec('float[4]') == ArrayType('float', 4)
    assert parse_type_spec('vec[2]') == ArrayType('vec', 2)
    assert parse_type_spec('vec') == NamedType('vec')


@pytest.mark.parametrize('text', ['float[0]', 'float[x]', 'float[]'])
def test_parse_type_spec_bad_array_size(text):
    with pytest.raises(SchemaError):
        parse_type_spec(text)


def test_expand_arrays_keeps_order():
    fields = [('a', 'uint8_t'), ('b', 'float[2]'), ('c', 'int16_t[3]'), ('d', 'double')]

    expanded = expand_arrays(fields)

    assert [name for name, _ in expanded] == ['a', 'b_0', 'b_1', 'c_0', 'c_1', 'c_2', 'd']
    assert [t for _, t in expanded] == ['uint8_t', 'float', 'float', 'int16_t', 'int16_t', 'int16_t', 'double']


def test_strip_padding_only_trailing():
    fields = [
        ('a', 'uint8_t'),
        ('padding0', 'uint8_t'),
        ('b', 'uint8_t'),
        ('padding0_0', 'uint8_t'),
        ('padding0_1', 'uint8_t'),
    ]

    assert strip_padding(fields) == fields[:3]
    assert strip_padding([]) == []


def test_resolve_array_and_trailing_padding(builder):
    fmt = _resolve(builder, 'Ex:uint8_t a;float b[2];uint8_t padding0_0')['Ex']

    assert fmt.field_names == ['a', 'b_0', 'b_1']
    assert [(f.kind, f.offset) for f in fmt.fields] == [
        (Primitive.UINT8, 0),
        (Primitive.FLOAT, 1),
        (Primitive.FLOAT, 5),
    ]
    assert fmt.size == 10


def test_resolve_strips_leading_underscore(builder):
    fmt = _resolve(builder, 'Ex:uint64_t timestamp;uint8_t[3] _padding0')['Ex']

    assert fmt.field_names == ['timestamp']
    assert fmt.size == 11


def test_resolve_embedded(builder):
    # pose is declared before vec on purpose
    formats = _resolve(
        builder,
        'pose:uint64_t timestamp;vec v;vec[2] w;uint8_t _padding0',
        'vec:float x;float y;uint8_t[3] _padding0',
    )
    pose = formats['pose']

    assert formats['vec'].size == 11
    assert pose.size == 8 + 11 * 3 + 1

    assert pose.field_names == ['timestamp', 'v__x', 'v__y', 'w_0__x', 'w_0__y', 'w_1__x', 'w_1__y']

    offsets = {f.name: f.offset for f in pose.fields}
    assert offsets['v__x'] == 8
    assert offsets['w_0__x'] == 19
    assert offsets['w_1__y'] == 34

    # padding bytes still count towards the offsets
    assert len(pose.padded_fields) == len(pose.fields) + 3 * 3 + 1


def test_resolve_embedded_padding_before_field(builder):
    formats = _resolve(
        builder,
        'vec:float x;uint8_t[3] _padding0',
        'pose:vec v;uint64_t timestamp',
    )
    pose = formats['pose']

    assert pose.field_names == ['v__x', 'timestamp']
    assert pose.fields[1].offset == 7
    assert pose.size == 15


def test_resolve_nested_and_shared(builder):
    formats = _resolve(
        builder,
        'a:float f',
        'b:a inner',
        'c:b outer;b other',
    )

    assert formats['c'].field_names == ['outer__inner__f', 'other__inner__f']
    assert formats['c'].size == 8


def test_resolve_self_reference(builder):
    with pytest.raises(SchemaError) as excinfo:
        _resolve(builder, 'A:uint8_t x;A self')

    assert excinfo.value.offset == 16


def test_resolve_indirect_cycle(builder):
    with pytest.raises(SchemaError):
        _resolve(builder, 'A:B b', 'B:uint8_t x;A a')


def test_resolve_unknown_type(builder):
    with pytest.raises(SchemaError) as excinfo:
        _resolve(builder, 'Ex:uint8_t a;mystery m')

    assert excinfo.value.offset == 16
    assert 'mystery' in str(excinfo.value)
    assert 'at byte 16' in str(excinfo.value)


def test_resolve_bad_array_size(builder):
    with pytest.raises(SchemaError) as excinfo:
        _resolve(builder, 'Ex:float b[0]')

    assert excinfo.value.offset == 16
