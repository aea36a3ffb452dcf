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
Sequential big-endian readers over a buffer or a stream. Every
value the class file decoder consumes comes through one of these.

:license: LGPL v.3
"""


from abc import ABCMeta, abstractmethod
from struct import Struct


__all__ = (
    "compile_struct", "unpack",
    "Unpacker", "BufferUnpacker", "StreamUnpacker",
    "UnpackException", "UnexpectedEndOfInput",
)


_struct_cache = dict()


def compile_struct(fmt, cache=None):
    """
    returns a struct.Struct instance compiled from fmt. If fmt has
    already been compiled, it will return the previously compiled
    Struct instance from the cache.
    """

    if cache is None:
        cache = _struct_cache

    sfmt = cache.get(fmt, None)
    if not sfmt:
        sfmt = Struct(fmt)
        cache[fmt] = sfmt
    return sfmt


class UnpackException(Exception):
    """
    base for every failure raised while decoding binary data
    """

    pass


class UnexpectedEndOfInput(UnpackException):
    """
    raised when there is not enough data left to satisfy a read
    """

    template = "format %r requires %i bytes at offset %i, only %i present"


    def __init__(self, fmt, wanted, present, offset=0):
        msg = self.template % (fmt, wanted, offset, present)
        super(UnexpectedEndOfInput, self).__init__(msg)

        self.format = fmt
        self.bytes_wanted = wanted
        self.bytes_present = present
        self.offset = offset


class Unpacker(metaclass=ABCMeta):
    """
    Abstract base class for `StreamUnpacker` and `BufferUnpacker`. Use
    the `unpack` function to obtain the correct unpacker instance for
    your data.
    """

    offset = 0


    def __enter__(self):
        return self


    def __exit__(self, exc_type, _exc_val, _exc_tb):
        self.close()


    @abstractmethod
    def read(self, count):  # pragma: no cover
        """
        read count bytes from the unpacker and return them. Raises
        UnexpectedEndOfInput if there is not enough data left.
        """

        pass


    @abstractmethod
    def close(self):  # pragma: no cover
        """
        release the underlying data
        """

        pass


    def unpack_struct(self, struct):
        """
        unpacks the given precompiled struct and returns the resulting
        tuple. Raises UnexpectedEndOfInput if there is not enough data
        to satisfy the format of the structure
        """

        return struct.unpack(self._take(struct.size, struct.format))


    def unpack(self, fmt):
        """
        unpacks the given format string and returns the resulting tuple
        """

        return self.unpack_struct(compile_struct(fmt))


    def _take(self, size, fmt):
        # the single choke point for consuming bytes, so that the
        # error carries the format that was wanted
        try:
            return self.read(size)
        except UnexpectedEndOfInput as uee:
            raise UnexpectedEndOfInput(fmt, size, uee.bytes_present,
                                       uee.offset) from None


    def read_u1(self):
        return self.unpack_struct(_B)[0]


    def read_u2(self):
        return self.unpack_struct(_H)[0]


    def read_u4(self):
        return self.unpack_struct(_I)[0]


    def read_i4(self):
        return self.unpack_struct(_i)[0]


    def read_i8(self):
        return self.unpack_struct(_q)[0]


    def read_f4(self):
        return self.unpack_struct(_f)[0]


    def read_f8(self):
        return self.unpack_struct(_d)[0]


    def read_bytes(self, count):
        """
        exactly count raw bytes, as a bytes instance
        """

        return bytes(self.read(count))


    def read_utf8(self):
        """
        a u2 length prefix followed by that many bytes of (modified)
        UTF-8 text. Returns the decoded str.
        """

        size = self.read_u2()
        return decode_modified_utf8(self.read_bytes(size))


    def unpack_struct_array(self, struct):
        """
        reads a count from the unpacker, and unpacks the precompiled
        struct count times. Yields a sequence of the unpacked data
        tuples
        """

        count = self.read_u2()
        for _i in range(count):
            yield self.unpack_struct(struct)


    def unpack_objects(self, atype, *params, **kwds):
        """
        reads a count from the unpacker, and instanciates that many calls
        to atype, with the given params and kwds passed along. Each
        instance then has its unpack method called with this unpacker
        instance passed along. Yields a squence of the unpacked
        instances
        """

        count = self.read_u2()
        for _i in range(count):
            obj = atype(*params, **kwds)
            obj.unpack(self)
            yield obj


class BufferUnpacker(Unpacker):
    """
    Unpacker wrapping bytes, a bytearray, or a memoryview.
    """

    def __init__(self, data, offset=0):
        super(BufferUnpacker, self).__init__()
        self.data = data
        self.offset = offset


    def read(self, count):
        """
        read count bytes from the underlying buffer. Raises
        UnexpectedEndOfInput if there is not enough data left in the
        underlying buffer.
        """

        offset = self.offset
        if self.data:
            avail = len(self.data) - offset
        else:
            avail = 0

        if avail < count:
            raise UnexpectedEndOfInput(None, count, max(avail, 0), offset)

        self.offset = offset + count
        return self.data[offset:self.offset]


    def close(self):
        """
        release the underlying buffer
        """

        self.data = None
        self.offset = 0


class StreamUnpacker(Unpacker):
    """
    Wraps a readable binary stream and advances along it while
    unpacking structures from it. Closing the unpacker only closes the
    stream if the unpacker was created with ``owned=True``.
    """

    def __init__(self, data, owned=False):
        super(StreamUnpacker, self).__init__()
        self.data = data
        self.owned = owned
        self.offset = 0


    def read(self, count):
        """
        read count bytes from the underlying stream. Raises
        UnexpectedEndOfInput if the stream runs dry first.
        """

        if self.data is None:
            raise UnexpectedEndOfInput(None, count, 0, self.offset)

        # a short read from a pipe or socket isn't necessarily the
        # end, so keep reading until satisfied or empty-handed
        buff = self.data.read(count)
        while len(buff) < count:
            more = self.data.read(count - len(buff))
            if not more:
                raise UnexpectedEndOfInput(None, count, len(buff),
                                           self.offset)
            buff += more

        self.offset += count
        return buff


    def close(self):
        """
        drop the underlying stream, closing it if this unpacker owns it
        """

        data = self.data
        self.data = None

        if self.owned and hasattr(data, "close"):
            data.close()


def unpack(data, owned=False):
    """
    returns either a BufferUnpacker or StreamUnpacker instance,
    depending upon the type of data. The unpacker supports the managed
    context interface, so may be used eg: `with unpack(my_data) as
    unpacker:`
    """

    if isinstance(data, (bytes, bytearray, memoryview)):
        return BufferUnpacker(data)

    elif hasattr(data, "read"):
        return StreamUnpacker(data, owned=owned)

    else:
        raise TypeError("unpack requires bytes, buffer, or instance"
                        " supporting the read method")


def decode_modified_utf8(data):
    """
    decode the JVM's modified UTF-8. NUL is stored as the two bytes
    C0 80, and characters outside the BMP are stored as a surrogate
    pair, each half encoded as its own three-byte sequence.

    Raises UnicodeDecodeError if the data is not decodable either
    way.
    """

    try:
        return data.decode("utf8")
    except UnicodeDecodeError:
        pass

    text = data.replace(b"\xC0\x80", b"\x00").decode("utf8", "surrogatepass")

    # re-pair any surrogate halves into real code points
    return text.encode("utf-16-be", "surrogatepass").decode("utf-16-be")


# We use these a lot, so let's not bother calling compile_struct over
# and over to get them.
_B = compile_struct(">B")
_H = compile_struct(">H")
_I = compile_struct(">I")
_i = compile_struct(">i")
_q = compile_struct(">q")
_f = compile_struct(">f")
_d = compile_struct(">d")


#
# The end.
