# Copyright 2016 Red Hat, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
XML interface specifications.
"""
SPECS = {
    "org.freedesktop.DBus.ObjectManager": """
<interface name="org.freedesktop.DBus.ObjectManager">
  <method name="GetManagedObjects">
    <arg name="objpath_interfaces_and_properties" type="a{oa{sa{sv}}}" direction="out" />
  </method>
</interface>
""",
    "org.storage.stratis3.filesystem.r8": """
<interface name="org.storage.stratis3.filesystem.r8">
  <property name="Created" type="s" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="const" />
  </property>
  <property name="Devnode" type="s" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="invalidates" />
  </property>
  <property name="MergeScheduled" type="b" access="readwrite" />
  <property name="Name" type="s" access="read" />
  <property name="Origin" type="(bs)" access="read" />
  <property name="Pool" type="o" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="const" />
  </property>
  <property name="Size" type="s" access="read" />
  <property name="SizeLimit" type="(bs)" access="readwrite" />
  <property name="Used" type="(bs)" access="read" />
  <property name="Uuid" type="s" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="const" />
  </property>
</interface>
""",
    "org.storage.stratis3.pool.r8": """
<interface name="org.storage.stratis3.pool.r8">
  <method name="CreateFilesystems">
    <arg name="specs" type="a(s(bs)(bs))" direction="in" />
    <arg name="results" type="(ba(os))" direction="out" />
    <arg name="return_code" type="q" direction="out" />
    <arg name="return_string" type="s" direction="out" />
  </method>
  <method name="DestroyFilesystems">
    <arg name="filesystems" type="ao" direction="in" />
    <arg name="results" type="(bas)" direction="out" />
    <arg name="return_code" type="q" direction="out" />
    <arg name="return_string" type="s" direction="out" />
  </method>
  <property name="AllocatedSize" type="s" access="read" />
  <property name="Available" type="(bs)" access="read" />
  <property name="Encrypted" type="b" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="const" />
  </property>
  <property name="FsLimit" type="t" access="readwrite" />
  <property name="HasCache" type="b" access="read" />
  <property name="Name" type="s" access="read" />
  <property name="NoAllocSpace" type="b" access="read" />
  <property name="Overprovisioning" type="b" access="readwrite" />
  <property name="TotalPhysicalSize" type="s" access="read" />
  <property name="TotalPhysicalUsed" type="(bs)" access="read" />
  <property name="Uuid" type="s" access="read">
    <annotation name="org.freedesktop.DBus.Property.EmitsChangedSignal" value="const" />
  </property>
</interface>
""",
}
