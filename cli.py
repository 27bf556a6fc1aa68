import argparse
from amaranth.back import rtlil, cxxrtl, verilog

from quadcache.cache import ReadCache
from quadcache.texture import TexCache


__all__ = ["main"]


def main_parser(parser=None):
    if parser is None:
        parser = argparse.ArgumentParser()

    p_action = parser.add_subparsers(dest="action")

    p_generate = p_action.add_parser("generate",
            help="generate RTLIL, Verilog or CXXRTL from the design")
    p_generate.add_argument("-t", "--type",
            dest="generate_type", metavar="LANGUAGE", choices=["il", "cc", "v"],
            help="generate LANGUAGE (il for RTLIL, v for Verilog, cc for CXXRTL; "
                 "default: file extension of FILE, if given)")
    p_generate.add_argument("--no-src",
            dest="emit_src", default=True, action="store_false",
            help="suppress generation of source location attributes")
    p_generate.add_argument("generate_file",
            metavar="FILE", type=argparse.FileType("w"), nargs="?",
            help="write generated code to FILE")

    return parser


def main_runner(parser, args, design, name="top"):
    if args.action == "generate":
        generate_type = args.generate_type
        if generate_type is None and args.generate_file:
            if args.generate_file.name.endswith(".il"):
                generate_type = "il"
            if args.generate_file.name.endswith(".cc"):
                generate_type = "cc"
            if args.generate_file.name.endswith(".v"):
                generate_type = "v"
        if generate_type is None:
            parser.error("Unable to auto-detect language, specify explicitly with -t/--type")
        if generate_type == "il":
            output = rtlil.convert(design, name=name, emit_src=args.emit_src)
        if generate_type == "cc":
            output = cxxrtl.convert(design, name=name, emit_src=args.emit_src)
        if generate_type == "v":
            output = verilog.convert(design, name=name, emit_src=args.emit_src)
        if args.generate_file:
            args.generate_file.write(output)
        else:
            print(output)
    else:
        parser.print_help()


def main():
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)

    parser.add_argument("--design",
            choices=["texcache", "readcache"], default="texcache",
            help="design to generate")

    texcache_group = parser.add_argument_group("texcache options")
    texcache_group.add_argument("--pixel-addr-width",
            type=int, default=14,
            help="pixel address width")
    texcache_group.add_argument("--tile-pixels-bits",
            type=int, default=8,
            help="width of the tile address forwarded with each quad")
    texcache_group.add_argument("--filter-fract-bits",
            type=int, default=4,
            help="fractional precision of the bilinear filter weights")
    texcache_group.add_argument("--max-pending",
            type=int, default=4,
            help="maximum number of backing store reads in flight")

    readcache_group = parser.add_argument_group("readcache options")
    readcache_group.add_argument("--addr-width",
            type=int, default=12,
            help="line address width")
    readcache_group.add_argument("--data-width",
            type=int, default=128,
            help="line width, in bits")

    parser.add_argument("--index-width",
            type=int, default=9,
            help="number of address bits selecting a cache line")

    main_parser(parser)

    args = parser.parse_args()

    if args.design == "texcache":
        design = TexCache(
            pixel_addr_width  = args.pixel_addr_width,
            index_width       = args.index_width,
            tile_pixels_bits  = args.tile_pixels_bits,
            filter_fract_bits = args.filter_fract_bits,
            max_pending       = args.max_pending,
        )
    else:
        design = ReadCache(
            data_width  = args.data_width,
            addr_width  = args.addr_width,
            index_width = args.index_width,
        )

    main_runner(parser, args, design, name=args.design)


if __name__ == "__main__":
    main()
