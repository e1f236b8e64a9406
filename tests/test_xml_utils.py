"""Tests for the xml_utils module."""

import pytest
from lxml import etree

from tc_library_exporter import xml_utils


TASK_XML = (
    "<TreeItem><Disabled>false</Disabled>"
    "<TaskDef><AutoStart>false</AutoStart></TaskDef></TreeItem>"
)

FULL_TASK_XML = """\
<TreeItem>
  <ItemName>PlcTask</ItemName>
  <PathName>TIRT^PlcTask</PathName>
  <!-- task settings -->
  <Disabled>false</Disabled>
  <TaskDef Priority="20" CycleTime="100000">
    <AutoStart>true</AutoStart>
    <AdtTasks>false</AdtTasks>
    <StackSize/>
  </TaskDef>
</TreeItem>"""

PLC_XML = """\
<TreeItem>
  <ItemName>Machine</ItemName>
  <PlcProjectDef>
    <ProjectGUID>{6b1a}</ProjectGUID>
    <AdsPort>851</AdsPort>
  </PlcProjectDef>
</TreeItem>"""


class TestSetDisabledAndAutostart:
    def test_example_document(self):
        result = xml_utils.set_disabled_and_autostart(TASK_XML, True, True)
        assert result == (
            "<TreeItem><Disabled>true</Disabled>"
            "<TaskDef><AutoStart>true</AutoStart></TaskDef></TreeItem>"
        )

    def test_only_target_elements_change(self):
        result = xml_utils.set_disabled_and_autostart(FULL_TASK_XML, True, False)
        expected = (
            FULL_TASK_XML
            .replace("<Disabled>false</Disabled>", "<Disabled>true</Disabled>")
            .replace("<AutoStart>true</AutoStart>", "<AutoStart>false</AutoStart>")
        )
        assert result == expected

    def test_round_trip(self):
        result = xml_utils.set_disabled_and_autostart(FULL_TASK_XML, True, False)
        assert xml_utils.get_disabled(result) is True
        assert xml_utils.get_autostart(result) is False

    def test_idempotent(self):
        once = xml_utils.set_disabled_and_autostart(FULL_TASK_XML, False, True)
        twice = xml_utils.set_disabled_and_autostart(once, False, True)
        assert once == twice

    def test_xml_declaration_kept(self):
        doc = '<?xml version="1.0" encoding="utf-16"?>\n' + TASK_XML
        result = xml_utils.set_disabled_and_autostart(doc, False, True)
        assert result.startswith('<?xml version="1.0" encoding="utf-16"?>\n<TreeItem>')
        assert "<AutoStart>true</AutoStart>" in result

    def test_missing_disabled_returns_empty(self):
        doc = "<TreeItem><TaskDef><AutoStart>false</AutoStart></TaskDef></TreeItem>"
        assert xml_utils.set_disabled_and_autostart(doc, True, True) == ""

    def test_missing_autostart_returns_empty(self):
        doc = "<TreeItem><Disabled>false</Disabled><TaskDef/></TreeItem>"
        assert xml_utils.set_disabled_and_autostart(doc, True, True) == ""

    def test_autostart_outside_taskdef_not_matched(self):
        doc = "<TreeItem><Disabled>false</Disabled><AutoStart>false</AutoStart></TreeItem>"
        assert xml_utils.set_disabled_and_autostart(doc, True, True) == ""

    def test_other_root_returns_empty(self):
        doc = "<Other><Disabled>false</Disabled><TaskDef><AutoStart>false</AutoStart></TaskDef></Other>"
        assert xml_utils.set_disabled_and_autostart(doc, True, True) == ""

    def test_sibling_markup_kept_verbatim(self):
        doc = (
            "<TreeItem><Note a='1'></Note><Empty />"
            "<Disabled>false</Disabled>"
            "<TaskDef Priority='20'><AutoStart>false</AutoStart></TaskDef></TreeItem>"
        )
        result = xml_utils.set_disabled_and_autostart(doc, True, True)
        assert result == (
            doc.replace("<Disabled>false<", "<Disabled>true<")
            .replace("<AutoStart>false<", "<AutoStart>true<")
        )

    def test_empty_element_tags_filled(self):
        doc = "<TreeItem><Disabled/><TaskDef><AutoStart /></TaskDef></TreeItem>"
        result = xml_utils.set_disabled_and_autostart(doc, True, False)
        assert result == (
            "<TreeItem><Disabled>true</Disabled>"
            "<TaskDef><AutoStart>false</AutoStart></TaskDef></TreeItem>"
        )

    def test_bom_and_declaration_kept(self):
        doc = "\ufeff<?xml version='1.0'?>\r\n" + TASK_XML
        result = xml_utils.set_disabled_and_autostart(doc, True, True)
        assert result.startswith("\ufeff<?xml version='1.0'?>\r\n<TreeItem>")

    def test_input_not_modified(self):
        original = str(TASK_XML)
        xml_utils.set_disabled_and_autostart(TASK_XML, True, True)
        assert TASK_XML == original

    def test_malformed_raises(self):
        with pytest.raises(etree.XMLSyntaxError):
            xml_utils.set_disabled_and_autostart("<TreeItem><Disabled>", True, True)


class TestFlagReaders:
    def test_read_flags(self):
        assert xml_utils.get_disabled(FULL_TASK_XML) is False
        assert xml_utils.get_autostart(FULL_TASK_XML) is True

    def test_missing_flags_return_none(self):
        doc = "<TreeItem/>"
        assert xml_utils.get_disabled(doc) is None
        assert xml_utils.get_autostart(doc) is None

    def test_invalid_boolean_raises(self):
        with pytest.raises(ValueError):
            xml_utils.get_disabled("<TreeItem><Disabled>maybe</Disabled></TreeItem>")


class TestGetItemName:
    def test_name(self):
        assert xml_utils.get_item_name(FULL_TASK_XML) == "PlcTask"

    def test_missing_returns_empty(self):
        assert xml_utils.get_item_name(TASK_XML) == ""

    def test_empty_element_returns_empty(self):
        assert xml_utils.get_item_name("<TreeItem><ItemName/></TreeItem>") == ""


class TestGetAmsPort:
    def test_port(self):
        assert xml_utils.get_ams_port(PLC_XML) == 851

    def test_missing_returns_none(self):
        assert xml_utils.get_ams_port("<TreeItem><PlcProjectDef/></TreeItem>") is None

    def test_not_a_number_raises(self):
        doc = "<TreeItem><PlcProjectDef><AdsPort>abc</AdsPort></PlcProjectDef></TreeItem>"
        with pytest.raises(ValueError):
            xml_utils.get_ams_port(doc)


class TestAddCompilerDefine:
    def test_appends_under_project_def(self):
        result = xml_utils.add_compiler_define(PLC_XML, "UNIT_TEST")
        root = etree.fromstring(result)
        defines = root.findall("PlcProjectDef/CompilerDefines")
        assert [d.text for d in defines] == ["UNIT_TEST"]
        assert root.find("PlcProjectDef")[-1].tag == "CompilerDefines"

    def test_repeated_call_duplicates(self):
        once = xml_utils.add_compiler_define(PLC_XML, "UNIT_TEST")
        twice = xml_utils.add_compiler_define(once, "UNIT_TEST")
        defines = etree.fromstring(twice).findall("PlcProjectDef/CompilerDefines")
        assert len(defines) == 2
        assert all(d.text == "UNIT_TEST" for d in defines)

    def test_rest_of_document_kept_verbatim(self):
        doc = (
            "<TreeItem><Note a='1'></Note>"
            "<PlcProjectDef><AdsPort>851</AdsPort><Empty/></PlcProjectDef></TreeItem>"
        )
        result = xml_utils.add_compiler_define(doc, "UNIT_TEST")
        assert result == doc.replace(
            "<Empty/></PlcProjectDef>",
            "<Empty/><CompilerDefines>UNIT_TEST</CompilerDefines></PlcProjectDef>",
        )

    def test_empty_project_def(self):
        result = xml_utils.add_compiler_define(
            "<TreeItem><PlcProjectDef /></TreeItem>", "A&B")
        assert result == (
            "<TreeItem><PlcProjectDef><CompilerDefines>A&amp;B</CompilerDefines>"
            "</PlcProjectDef></TreeItem>"
        )

    def test_missing_project_def_raises(self):
        with pytest.raises(ValueError):
            xml_utils.add_compiler_define(TASK_XML, "X")


class TestIsTwinCATProjectPinned:
    def _write(self, tmp_path, content):
        f = tmp_path / "Machine.tsproj"
        f.write_text(content, encoding="utf-8")
        return str(f)

    def test_pinned(self, tmp_path):
        path = self._write(tmp_path, '<TcSmProject TcVersionFixed="true"/>')
        assert xml_utils.is_twincat_project_pinned(path) is True

    def test_not_pinned_without_attribute(self, tmp_path):
        path = self._write(tmp_path, "<TcSmProject/>")
        assert xml_utils.is_twincat_project_pinned(path) is False

    def test_false_attribute(self, tmp_path):
        path = self._write(tmp_path, '<TcSmProject TcVersionFixed="False"/>')
        assert xml_utils.is_twincat_project_pinned(path) is False

    def test_other_root_is_not_pinned(self, tmp_path):
        path = self._write(tmp_path, '<Project TcVersionFixed="true"/>')
        assert xml_utils.is_twincat_project_pinned(path) is False

    def test_declaration_and_bom(self, tmp_path):
        f = tmp_path / "Machine.tsproj"
        f.write_text(
            '<?xml version="1.0"?>\n<TcSmProject TcVersion="3.1.4024.11" TcVersionFixed="True"/>',
            encoding="utf-8-sig",
        )
        assert xml_utils.is_twincat_project_pinned(str(f)) is True

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            xml_utils.is_twincat_project_pinned(str(tmp_path / "nope.tsproj"))
