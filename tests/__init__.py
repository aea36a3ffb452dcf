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
unit tests for python-javaclass

Class file fixtures are assembled in memory by ClassBuilder rather
than shipped as compiled binaries.

license: LGPL v.3
"""


from struct import pack

from javaclass import (
    ACC_PUBLIC, ACC_SUPER, JAVA_CLASS_MAGIC,
    CONST_Utf8, CONST_Integer, CONST_Float, CONST_Long, CONST_Double,
    CONST_Class, CONST_String, CONST_NameAndType,
)


class ClassBuilder(object):
    """
    Assembles the bytes of a class file. Pool entries are appended in
    call order and each helper returns the index it was given.
    """

    def __init__(self, major=52, minor=0):
        self.version = (major, minor)
        self.consts = list()
        self.slots = 1
        self._utf8 = dict()
        self._classes = dict()

        self.access_flags = ACC_PUBLIC | ACC_SUPER
        self.this_ref = 0
        self.super_ref = 0
        self.interfaces = list()
        self.fields = list()
        self.methods = list()


    def _add(self, data, width=1):
        index = self.slots
        self.consts.append(data)
        self.slots += width
        return index


    def raw_utf8(self, raw):
        return self._add(pack(">BH", CONST_Utf8, len(raw)) + raw)


    def utf8(self, text):
        if text not in self._utf8:
            self._utf8[text] = self.raw_utf8(text.encode("utf8"))
        return self._utf8[text]


    def class_ref(self, name):
        if name not in self._classes:
            ref = self.utf8(name)
            self._classes[name] = self._add(pack(">BH", CONST_Class, ref))
        return self._classes[name]


    def integer(self, value):
        return self._add(pack(">Bi", CONST_Integer, value))


    def float(self, value):
        return self._add(pack(">Bf", CONST_Float, value))


    def long(self, value):
        return self._add(pack(">Bq", CONST_Long, value), width=2)


    def double(self, value):
        return self._add(pack(">Bd", CONST_Double, value), width=2)


    def string(self, text):
        ref = self.utf8(text)
        return self._add(pack(">BH", CONST_String, ref))


    def ref(self, tag, first, second):
        return self._add(pack(">BHH", tag, first, second))


    def name_and_type(self, name, descriptor):
        return self.ref(CONST_NameAndType,
                        self.utf8(name), self.utf8(descriptor))


    def set_this(self, name):
        self.this_ref = self.class_ref(name)


    def set_super(self, name):
        self.super_ref = self.class_ref(name)


    def add_interface(self, name):
        self.interfaces.append(self.class_ref(name))


    def _member(self, name, descriptor, access_flags, attributes):
        attrs = [(self.utf8(aname), data) for aname, data in attributes]
        return (access_flags, self.utf8(name), self.utf8(descriptor), attrs)


    def add_field(self, name, descriptor, access_flags=0, attributes=()):
        member = self._member(name, descriptor, access_flags, attributes)
        self.fields.append(member)


    def add_method(self, name, descriptor, access_flags=0, attributes=()):
        member = self._member(name, descriptor, access_flags, attributes)
        self.methods.append(member)


    def pool_bytes(self):
        return pack(">H", self.slots) + b"".join(self.consts)


    def build(self):
        major, minor = self.version

        out = [pack(">IHH", JAVA_CLASS_MAGIC, minor, major),
               self.pool_bytes(),
               pack(">HHH", self.access_flags,
                    self.this_ref, self.super_ref),
               pack(">H", len(self.interfaces))]

        out.extend(pack(">H", ref) for ref in self.interfaces)

        for table in (self.fields, self.methods):
            out.append(pack(">H", len(table)))
            for flags, name, desc, attrs in table:
                out.append(pack(">HHHH", flags, name, desc, len(attrs)))
                for aname, data in attrs:
                    out.append(pack(">HI", aname, len(data)))
                    out.append(data)

        return b"".join(out)


def widget():
    """
    com/example/Widget extends java/lang/Object, with an int field
    named count and a constructor
    """

    b = ClassBuilder()
    b.set_this("com/example/Widget")
    b.set_super("java/lang/Object")
    b.add_field("count", "I")
    b.add_method("<init>", "()V",
                 attributes=[("Code", b"\x00\x01\x00\x01\x00\x00\x00\x01\xb1"
                              b"\x00\x00\x00\x00")])
    return b


#
# The end.
