# This library is free software; you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as
# published by the Free Software Foundation; either version 3 of the
# License, or (at your option) any later version.
#
# This library is distributed in the hope that it will be useful, but
# WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public
# License along with this library; if not, see
# <http://www.gnu.org/licenses/>.


"""
Read-only Java class file decoder. Unpacks the constant pool, the
class header and the field and method tables of a compiled class,
then resolves them into a JavaClassDescriptor holding the class
name, package, super class, interfaces and field types.

References
----------
* http://docs.oracle.com/javase/specs/jvms/se7/html/jvms-4.html
* http://en.wikipedia.org/wiki/Class_(file_format)

:license: LGPL
"""  # noqa


import logging

from collections import namedtuple

from .pack import (
    compile_struct, unpack,
    UnpackException, UnexpectedEndOfInput,
)


__all__ = (
    "JavaClassDescriptor", "JavaClassInfo", "JavaConstantPool",
    "JavaMemberInfo", "JavaAttributeInfo",
    "UnpackException", "UnexpectedEndOfInput", "ClassUnpackException",
    "NotAClassFile", "UnknownConstantTag",
    "ConstantIndexOutOfRange", "ConstantTypeMismatch",
    "parse", "parse_classfile", "unpack_class", "resolve_class",
    "is_class", "is_class_file", "platform_from_version",
    "pretty_class", "pretty_field_type", "split_class_name",
    "ConstUtf8", "ConstInteger", "ConstFloat", "ConstLong",
    "ConstDouble", "ConstClass", "ConstString", "ConstFieldref",
    "ConstMethodref", "ConstInterfaceMethodref", "ConstNameAndType",
    "CONST_Utf8", "CONST_Integer", "CONST_Float",
    "CONST_Long", "CONST_Double", "CONST_Class",
    "CONST_String", "CONST_Fieldref", "CONST_Methodref",
    "CONST_InterfaceMethodref", "CONST_NameAndType",
    "ACC_PUBLIC", "ACC_FINAL", "ACC_SUPER",
    "ACC_INTERFACE", "ACC_ABSTRACT", "ACC_ANNOTATION", "ACC_ENUM",
    "JAVA_CLASS_MAGIC", "DEFAULT_PACKAGE",
)


_log = logging.getLogger(__name__)


# the u4 at the start of every class file
JAVA_CLASS_MAGIC = 0xCAFEBABE


# package of a class that was declared without one
DEFAULT_PACKAGE = ""


# The constant pool types
# pylint: disable=C0103
CONST_Utf8 = 1
CONST_Integer = 3
CONST_Float = 4
CONST_Long = 5
CONST_Double = 6
CONST_Class = 7
CONST_String = 8
CONST_Fieldref = 9
CONST_Methodref = 10
CONST_InterfaceMethodref = 11
CONST_NameAndType = 12


# class access flags
ACC_PUBLIC = 0x0001
ACC_FINAL = 0x0010
ACC_SUPER = 0x0020
ACC_INTERFACE = 0x0200
ACC_ABSTRACT = 0x0400
ACC_ANNOTATION = 0x2000
ACC_ENUM = 0x4000


# commonly re-occurring struct formats
_H = compile_struct(">H")
_HH = compile_struct(">HH")
_HHH = compile_struct(">HHH")
_HI = compile_struct(">HI")


class ClassUnpackException(UnpackException):
    """
    raised when a class couldn't be unpacked or resolved
    """

    pass


class NotAClassFile(ClassUnpackException):
    """
    raised when the leading u4 is not the class file magic number
    """

    template = "Not a Java class file, magic was 0x%08X"


    def __init__(self, magic):
        super(NotAClassFile, self).__init__(self.template % magic)
        self.magic = magic


class UnknownConstantTag(ClassUnpackException):
    """
    raised for a constant pool tag this module cannot decode. The
    layout of whatever follows is unknowable, so there's no skipping
    past it.
    """

    template = "unknown constant type %r for const #%i at offset %i"


    def __init__(self, tag, index, offset):
        msg = self.template % (tag, index, offset)
        super(UnknownConstantTag, self).__init__(msg)

        self.tag = tag
        self.index = index
        self.offset = offset


class ConstantIndexOutOfRange(ClassUnpackException, IndexError):
    """
    raised when dereferencing a constant pool index that doesn't
    refer to a usable entry
    """

    template = "const #%i is not usable in a pool of %i slots"


    def __init__(self, index, size):
        msg = self.template % (index, size)
        super(ConstantIndexOutOfRange, self).__init__(msg)

        self.index = index
        self.size = size


class ConstantTypeMismatch(ClassUnpackException):
    """
    raised when a constant pool reference points at an entry of the
    wrong kind, eg. a class reference naming an Integer
    """

    template = "const #%i is %s, expected %s"


    def __init__(self, index, found, expected):
        msg = self.template % (index, type(found).__name__, expected)
        super(ConstantTypeMismatch, self).__init__(msg)

        self.index = index
        self.found = found
        self.expected = expected


# -----
# Constant pool entries. One immutable type per tag, each carrying
# its tag as a class attribute.


class ConstUtf8(namedtuple("ConstUtf8", ("value", ))):
    __slots__ = ()
    tag = CONST_Utf8


class ConstInteger(namedtuple("ConstInteger", ("value", ))):
    __slots__ = ()
    tag = CONST_Integer


class ConstFloat(namedtuple("ConstFloat", ("value", ))):
    __slots__ = ()
    tag = CONST_Float


class ConstLong(namedtuple("ConstLong", ("value", ))):
    __slots__ = ()
    tag = CONST_Long


class ConstDouble(namedtuple("ConstDouble", ("value", ))):
    __slots__ = ()
    tag = CONST_Double


class ConstClass(namedtuple("ConstClass", ("name_index", ))):
    __slots__ = ()
    tag = CONST_Class


class ConstString(namedtuple("ConstString", ("name_index", ))):
    __slots__ = ()
    tag = CONST_String


class ConstFieldref(namedtuple("ConstFieldref",
                               ("name_index", "type_index"))):
    __slots__ = ()
    tag = CONST_Fieldref


class ConstMethodref(namedtuple("ConstMethodref",
                                ("name_index", "type_index"))):
    __slots__ = ()
    tag = CONST_Methodref


class ConstInterfaceMethodref(namedtuple("ConstInterfaceMethodref",
                                         ("name_index", "type_index"))):
    __slots__ = ()
    tag = CONST_InterfaceMethodref


class ConstNameAndType(namedtuple("ConstNameAndType",
                                  ("name_index", "type_index"))):
    __slots__ = ()
    tag = CONST_NameAndType


# fixed-width layouts, by tag, as the type followed by the unpacker
# reads for its fields. Utf8 is the only variable-width entry and is
# handled separately.
_CONST_LAYOUTS = {
    CONST_Integer: (ConstInteger, "read_i4"),
    CONST_Float: (ConstFloat, "read_f4"),
    CONST_Long: (ConstLong, "read_i8"),
    CONST_Double: (ConstDouble, "read_f8"),
    CONST_Class: (ConstClass, "read_u2"),
    CONST_String: (ConstString, "read_u2"),
    CONST_Fieldref: (ConstFieldref, "read_u2", "read_u2"),
    CONST_Methodref: (ConstMethodref, "read_u2", "read_u2"),
    CONST_InterfaceMethodref: (ConstInterfaceMethodref,
                               "read_u2", "read_u2"),
    CONST_NameAndType: (ConstNameAndType, "read_u2", "read_u2"),
}


class JavaConstantPool(object):
    """
    A constants pool. Slot 0 is never present in the data, and the
    slot following a Long or Double is unusable.

    reference: http://docs.oracle.com/javase/specs/jvms/se7/html/jvms-4.html#jvms-4.4
    """  # noqa

    def __init__(self):
        self.consts = (None, )


    def __len__(self):
        return len(self.consts)


    def __eq__(self, other):
        return (isinstance(other, JavaConstantPool) and
                (self.consts == other.consts))


    def __ne__(self, other):
        return not self.__eq__(other)


    def unpack(self, unpacker):
        """
        Unpacks the constant pool from an unpacker stream
        """

        count = unpacker.read_u2()

        # first item is never present in the actual data buffer, but
        # the count number acts like it would be.
        items = [None, ]

        # Long and Double const types will "consume" an item count,
        # but not data
        hackpass = False

        for index in range(1, count):

            if hackpass:
                # previous item was a long or double
                hackpass = False
                items.append(None)

            else:
                item = _unpack_const_item(unpacker, index)
                items.append(item)
                hackpass = item.tag in (CONST_Long, CONST_Double)

        self.consts = tuple(items)


    def in_range(self, index):
        """
        whether index falls inside the pool. Slot 0 never does.
        """

        return 0 < index < len(self.consts)


    def is_usable(self, index):
        """
        whether index refers to an entry, which rules out the second
        slot of a Long or Double as well as anything out of range
        """

        return self.in_range(index) and self.consts[index] is not None


    def get_const(self, index):
        """
        returns the entry at index. Raises ConstantIndexOutOfRange for
        slot 0, for indexes past the end of the pool, and for the
        unusable second slot of a Long or Double.
        """

        if not self.in_range(index):
            raise ConstantIndexOutOfRange(index, len(self.consts))

        item = self.consts[index]
        if item is None:
            raise ConstantIndexOutOfRange(index, len(self.consts))

        return item


    def deref_utf8(self, index):
        """
        the text of the Utf8 entry at index
        """

        item = self.get_const(index)
        if item.tag != CONST_Utf8:
            raise ConstantTypeMismatch(index, item, "ConstUtf8")
        return item.value


    def deref_class_name(self, index):
        """
        the internal (slash separated) name of the Class entry at index
        """

        item = self.get_const(index)
        if item.tag != CONST_Class:
            raise ConstantTypeMismatch(index, item, "ConstClass")
        return self.deref_utf8(item.name_index)


    def deref_const(self, index):
        """
        returns the dereferenced value from the const pool. For simple
        types, this will be a single value indicating the constant.
        For more complex types, such as fieldref, methodref, etc, this
        will return a tuple.
        """

        item = self.get_const(index)
        t = item.tag

        if t in (CONST_Utf8, CONST_Integer, CONST_Float,
                 CONST_Long, CONST_Double):
            return item.value

        elif t in (CONST_Class, CONST_String):
            return self.deref_utf8(item.name_index)

        elif t == CONST_NameAndType:
            return (self.deref_utf8(item.name_index),
                    self.deref_utf8(item.type_index))

        # member references, as (class, (name, descriptor))
        nat = self.get_const(item.type_index)
        if nat.tag != CONST_NameAndType:
            raise ConstantTypeMismatch(item.type_index, nat,
                                       "ConstNameAndType")

        return (self.deref_class_name(item.name_index),
                self.deref_const(item.type_index))


    def constants(self):
        """
        sequence of (index, entry) tuples for every usable slot
        """

        for index, item in enumerate(self.consts):
            if item is not None:
                yield index, item


def _unpack_const_item(unpacker, index):
    """
    unpack a constant pool item, which will consist of a type byte
    (see the CONST_ values in this module) and a value of the
    appropriate type
    """

    offset = unpacker.offset
    tag = unpacker.read_u1()

    if tag == CONST_Utf8:
        try:
            return ConstUtf8(unpacker.read_utf8())
        except UnicodeDecodeError as ude:
            msg = "undecodable Utf8 const #%i at offset %i" % (index, offset)
            raise ClassUnpackException(msg) from ude

    layout = _CONST_LAYOUTS.get(tag)
    if layout is None:
        raise UnknownConstantTag(tag, index, offset)

    ctype = layout[0]
    return ctype(*(getattr(unpacker, reader)() for reader in layout[1:]))


class JavaAttributeInfo(object):
    """
    An attribute block of a field or method. The payload is kept as
    raw bytes and never interpreted here.
    """

    def __init__(self, cpool):
        self.cpool = cpool
        self.name_ref = 0
        self.data = b""


    def unpack(self, unpacker):
        (name_ref, size) = unpacker.unpack_struct(_HI)
        self.name_ref = name_ref
        self.data = unpacker.read_bytes(size)


    def get_name(self):
        return self.cpool.deref_utf8(self.name_ref)


class JavaMemberInfo(object):
    """
    A field or method of a java class, as raw constant pool indexes
    """

    def __init__(self, cpool, is_method=False):
        self.cpool = cpool
        self.access_flags = 0
        self.name_ref = 0
        self.descriptor_ref = 0
        self.is_method = is_method
        self.attribs = tuple()


    def unpack(self, unpacker):
        """
        unpack the contents of this instance from the values in unpacker
        """

        (a, b, c) = unpacker.unpack_struct(_HHH)

        self.access_flags = a
        self.name_ref = b
        self.descriptor_ref = c
        self.attribs = tuple(unpacker.unpack_objects(JavaAttributeInfo,
                                                     self.cpool))


    def get_name(self):
        """
        the name of this member
        """

        return self.cpool.deref_utf8(self.name_ref)


    def get_descriptor(self):
        """
        the descriptor of this member, eg. ``Ljava/lang/String;``
        """

        return self.cpool.deref_utf8(self.descriptor_ref)


    def get_attribute(self, name):
        """
        the raw payload of the first attribute called name, or None
        """

        for attr in self.attribs:
            if attr.get_name() == name:
                return attr.data
        return None


    def pretty_type(self):
        """
        the dotted type name of a field
        """

        return pretty_field_type(self.get_descriptor())


class JavaClassInfo(object):
    """
    The structure of a class file up to the end of its method table,
    with every cross reference left as a raw constant pool index.

    reference: http://docs.oracle.com/javase/specs/jvms/se7/html/jvms-4.html
    """

    def __init__(self):
        self.cpool = JavaConstantPool()

        self.magic = JAVA_CLASS_MAGIC
        self.version = (0, 0)
        self.access_flags = 0
        self.this_ref = 0
        self.super_ref = 0
        self.interfaces = tuple()
        self.fields = tuple()
        self.methods = tuple()


    def unpack(self, unpacker, magic=None):
        """
        Unpacks a Java class from an unpacker stream. Updates the
        structure of this instance.

        If the unpacker has already had the magic header read off of
        it, the read value may be passed via the optional magic
        parameter and it will not attempt to read the value again.
        """

        if magic is None:
            magic = unpacker.read_u4()
        elif not isinstance(magic, int):
            magic = int.from_bytes(bytes(magic), "big")

        if magic != JAVA_CLASS_MAGIC:
            raise NotAClassFile(magic)

        self.magic = magic

        # unpack (minor, major), store as (major, minor)
        self.version = unpacker.unpack_struct(_HH)[::-1]

        self.cpool.unpack(unpacker)
        _log.debug("unpacked constant pool of %i slots, now at offset %i",
                   len(self.cpool), unpacker.offset)

        (a, b, c) = unpacker.unpack_struct(_HHH)
        self.access_flags = a
        self.this_ref = b
        self.super_ref = c

        self.interfaces = tuple(i for (i, ) in
                                unpacker.unpack_struct_array(_H))

        uobjs = unpacker.unpack_objects

        self.fields = tuple(uobjs(JavaMemberInfo,
                                  self.cpool, is_method=False))

        self.methods = tuple(uobjs(JavaMemberInfo,
                                   self.cpool, is_method=True))

        _log.debug("unpacked %i fields and %i methods, stopped at"
                   " offset %i", len(self.fields), len(self.methods),
                   unpacker.offset)


    def is_interface(self):
        return bool(self.access_flags & ACC_INTERFACE)


    def is_abstract(self):
        """
        is this class abstract, which every interface is
        """

        return bool(self.access_flags & (ACC_INTERFACE | ACC_ABSTRACT))


    def get_this(self):
        """
        the internal name of this class
        """

        return self.cpool.deref_class_name(self.this_ref)


    def get_super(self):
        """
        the internal name of the parent class, or None for
        java/lang/Object, which has no parent and a super index of 0.
        Any other reference to a slot without an entry is also None.
        """

        if not self.cpool.is_usable(self.super_ref):
            return None
        return self.cpool.deref_class_name(self.super_ref)


    def get_interfaces(self):
        """
        tuple of internal names of the interfaces this class
        implements, skipping any index that doesn't refer to an entry
        """

        found = list()
        for ref in self.interfaces:
            if self.cpool.is_usable(ref):
                found.append(self.cpool.deref_class_name(ref))
            else:
                _log.debug("skipping unusable interface const #%i", ref)
        return tuple(found)


class JavaClassDescriptor(object):
    """
    The resolved identity, inheritance and field types of a class.
    Produced by `parse` and `resolve_class`.
    """

    def __init__(self, name, package=DEFAULT_PACKAGE, is_abstract=False,
                 super_class=None, interfaces=(), fields=None,
                 version=(0, 0), access_flags=0):

        self.name = name
        self.package = package
        self.is_abstract = is_abstract
        self.super_class = super_class
        self.interfaces = tuple(interfaces)
        self.fields = dict(fields or ())
        self.version = version
        self.access_flags = access_flags


    def get_qualified_name(self):
        """
        the dotted name, including the package if there is one
        """

        if self.package == DEFAULT_PACKAGE:
            return self.name
        return "%s.%s" % (self.package, self.name)


    def is_interface(self):
        """
        is this an interface
        """

        return bool(self.access_flags & ACC_INTERFACE)


    def get_platform(self):
        """
        The platform as a string, derived from the major and minor version
        number
        """

        return platform_from_version(*self.version)


    def _info(self):
        return (self.name, self.package, self.is_abstract,
                self.super_class, self.interfaces, self.fields,
                self.version, self.access_flags)


    def __eq__(self, other):
        return (isinstance(other, JavaClassDescriptor) and
                (self._info() == other._info()))


    def __ne__(self, other):
        return not self.__eq__(other)


    def __repr__(self):
        return "<JavaClassDescriptor %s extends %s>" % \
            (self.get_qualified_name(), self.super_class)


# -----
# Resolution of raw indexes into dotted names


def resolve_class(info):
    """
    resolves the raw constant pool references of an unpacked
    JavaClassInfo into a JavaClassDescriptor
    """

    package, name = split_class_name(pretty_class(info.get_this()))

    sup = info.get_super()
    if sup is not None:
        sup = pretty_class(sup)

    interfaces = tuple(pretty_class(i) for i in info.get_interfaces())

    fields = dict()
    for field in info.fields:
        fields[field.get_name()] = field.pretty_type()

    desc = JavaClassDescriptor(name, package,
                               is_abstract=info.is_abstract(),
                               super_class=sup,
                               interfaces=interfaces,
                               fields=fields,
                               version=info.version,
                               access_flags=info.access_flags)

    _log.debug("resolved class %s with %i fields",
               desc.get_qualified_name(), len(fields))
    return desc


def split_class_name(dotted):
    """
    (package, simple name) of a dotted class name. A name without a
    package separator (or with one only in leading position) lives in
    DEFAULT_PACKAGE.
    """

    end = dotted.rfind(".")
    if end > 0:
        return dotted[:end], dotted[end + 1:]
    return DEFAULT_PACKAGE, dotted


def pretty_class(s):
    """
    convert the internal class name representation into what users
    expect to see. Currently that just means swapping '/' for '.'
    """

    # well that's easy.
    return s.replace("/", ".")


_PRIMITIVES = {
    "Z": "boolean",
    "C": "char",
    "B": "byte",
    "S": "short",
    "I": "int",
    "J": "long",
    "F": "float",
    "D": "double",
}


def pretty_field_type(descriptor):
    """
    returns the pretty version of a field type descriptor. Object
    types lose their L and ; and get dots, primitives become their
    keyword, and arrays get a [] per dimension.

    eg. ``[Ljava/lang/String;`` becomes ``java.lang.String[]``
    """

    base = descriptor.lstrip("[")
    dims = len(descriptor) - len(base)

    if base in _PRIMITIVES:
        pretty = _PRIMITIVES[base]

    elif len(base) > 2 and base[0] == "L" and base[-1] == ";":
        pretty = pretty_class(base[1:-1])

    else:
        raise ClassUnpackException("unknown field descriptor %r"
                                   % descriptor)

    return pretty + "[]" * dims


# -----
# Utility functions for turning major/minor versions into JVM releases
# Each entry is a tuple of minimum version and maxiumum version,
# inclusive, and the string of the platform version.


_platforms = (
    ((45, 0), (45, 3), "1.0.2"),
    ((45, 4), (45, 65535), "1.1"),
    ((46, 0), (46, 65535), "1.2"),
    ((47, 0), (47, 65535), "1.3"),
    ((48, 0), (48, 65535), "1.4"),
    ((49, 0), (49, 65535), "1.5"),
    ((50, 0), (50, 65535), "1.6"),
    ((51, 0), (51, 65535), "1.7"),
    ((52, 0), (52, 65535), "1.8"), ) + tuple(
        ((major, 0), (major, 65535), str(major - 44))
        for major in range(53, 70))


def platform_from_version(major, minor):
    """
    returns the minimum platform version that can load the given class
    version indicated by major.minor or None if no known platforms
    match the given version
    """

    v = (major, minor)
    for low, high, name in _platforms:
        if low <= v <= high:
            return name
    return None


# -----
# Functions for dealing with buffers and files


def is_class(data):
    """
    checks that the data (which is bytes, a buffer, or a stream
    supporting the read method) has the magic number indicating it is
    a Java class file. Returns False if the magic numbers do not
    match, or for any errors.
    """

    try:
        with unpack(data) as up:
            return up.read_u4() == JAVA_CLASS_MAGIC

    except UnpackException:
        return False


def is_class_file(filename):
    """
    checks whether the given file is a Java class file, by opening it
    and checking for the magic header
    """

    with open(filename, "rb") as fd:
        return int.from_bytes(fd.read(4), "big") == JAVA_CLASS_MAGIC


def unpack_class(data, magic=None):
    """
    unpacks a Java class from data, which can be bytes, a buffer, or a
    stream supporting the read method. Returns a populated
    JavaClassInfo instance.

    If data is a stream which has already been confirmed to be a java
    class, it may have had the first four bytes read from it already.
    In this case, pass those magic bytes (or their u4 value) and the
    unpacker will not attempt to read them again.

    A stream passed in is read from but not closed.
    """

    with unpack(data) as up:
        info = JavaClassInfo()
        info.unpack(up, magic=magic)

    return info


def parse(data, magic=None):
    """
    unpacks and resolves a Java class from data, returning a
    JavaClassDescriptor. See `unpack_class` for the accepted data and
    the meaning of magic.

    Raises a ClassUnpackException or an UnexpectedEndOfInput if the
    class data is malformed. Nothing partial is ever returned.
    """

    return resolve_class(unpack_class(data, magic=magic))


def parse_classfile(filename):
    """
    returns a JavaClassDescriptor for the class file at filename
    """

    with open(filename, "rb") as fd:
        return parse(fd.read())


#
# The end.
